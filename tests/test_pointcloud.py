"""Unit tests for PointCloudCollector voxel deduplication."""

import math

import numpy as np
import pytest

from wayfinder.pointcloud import PointCloudCollector


def test_points_in_one_cell_collapse_to_latest():
    collector = PointCloudCollector(cell_size=0.2)

    added = collector.ingest([(0.01, 0.0, 0.0), (0.05, 0.05, 0.05)])

    assert added == 1
    assert collector.count == 1
    assert collector.points == [(0.05, 0.05, 0.05)], "Last writer wins within a cell"


def test_cells_use_floor_for_negative_coordinates():
    collector = PointCloudCollector(cell_size=0.2)
    collector.ingest(np.array([[-0.01, 0.0, 0.0], [0.01, 0.0, 0.0]], dtype=np.float32))

    assert collector.count == 2


def test_capacity_drops_new_cells_but_refreshes_known_ones():
    collector = PointCloudCollector(cell_size=1.0, max_points=2)

    added = collector.ingest([(0.1, 0.0, 0.0), (1.1, 0.0, 0.0), (2.1, 0.0, 0.0)])
    assert added == 2
    assert collector.count == 2

    assert collector.ingest([(0.9, 0.0, 0.0), (5.0, 0.0, 0.0)]) == 0
    assert collector.count == 2
    assert (0.9, 0.0, 0.0) in collector.points


def test_non_finite_points_are_ignored():
    collector = PointCloudCollector(cell_size=0.2)
    collector.ingest([(math.nan, 0.0, 0.0), (0.0, math.inf, 0.0), (1.0, 1.0, 1.0)])

    assert collector.count == 1


def test_reset_seeds_from_existing_points():
    collector = PointCloudCollector(cell_size=0.5)
    collector.ingest([(0.0, 0.0, 0.0)])
    collector.reset([(3.0, 3.0, 3.0), (3.1, 3.1, 3.1)])

    assert collector.count == 1
    assert collector.as_array().shape == (1, 3)


def test_empty_ingest_is_a_no_op():
    collector = PointCloudCollector()
    assert collector.ingest([]) == 0
    assert collector.as_array().shape == (0, 3)


def test_cell_size_must_be_positive():
    with pytest.raises(ValueError):
        PointCloudCollector(cell_size=0.0)


def test_rows_without_three_coordinates_are_dropped():
    """Short rows are not regrouped into bogus 3-D points."""
    collector = PointCloudCollector(cell_size=0.2)

    assert collector.ingest([(0, 1), (2, 3), (4, 5)]) == 0
    assert collector.count == 0

    assert collector.ingest([(0, 1), (2.0, 2.0, 2.0), (4, 5)]) == 1
    assert collector.points == [(2.0, 2.0, 2.0)]


def test_array_with_wrong_shape_is_rejected():
    collector = PointCloudCollector(cell_size=0.2)

    with pytest.raises(ValueError):
        collector.ingest(np.arange(6, dtype=np.float32).reshape(3, 2))
    assert collector.count == 0
