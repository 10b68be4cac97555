from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple, Union

import numpy as np

from wayfinder.geometry import Vec3

PointsLike = Union[np.ndarray, Iterable[Sequence[float]]]


class PointCloudCollector:
    """Voxel-grid deduplicator that keeps a raw feature-point stream bounded.

    Each cell keeps the latest sample that fell into it. Once ``max_points``
    cells are held, unseen cells are dropped while known cells still refresh.
    """

    def __init__(self, cell_size: float = 0.2, max_points: int = 50_000) -> None:
        if cell_size <= 0.0:
            raise ValueError("cell_size must be positive.")
        self.cell_size = float(cell_size)
        self.max_points = int(max_points)
        self._grid: Dict[Tuple[int, int, int], Vec3] = {}

    @property
    def count(self) -> int:
        return len(self._grid)

    @property
    def points(self) -> List[Vec3]:
        return list(self._grid.values())

    def as_array(self) -> np.ndarray:
        if not self._grid:
            return np.zeros((0, 3), dtype=np.float64)
        return np.asarray(list(self._grid.values()), dtype=np.float64)

    def reset(self, existing: PointsLike = ()) -> None:
        self._grid = {}
        self.ingest(existing)

    def ingest(self, points: PointsLike) -> int:
        """Returns the number of newly occupied cells."""
        if self.max_points <= 0:
            return 0

        arr = _as_points_array(points)
        if arr.shape[0] == 0:
            return 0

        cells = np.floor(arr / self.cell_size).astype(np.int64)
        added = 0
        for i in range(arr.shape[0]):
            key = (int(cells[i, 0]), int(cells[i, 1]), int(cells[i, 2]))
            point = (float(arr[i, 0]), float(arr[i, 1]), float(arr[i, 2]))
            if key in self._grid:
                self._grid[key] = point
            elif len(self._grid) < self.max_points:
                self._grid[key] = point
                added += 1
        return added


def _as_points_array(points: PointsLike) -> np.ndarray:
    if isinstance(points, np.ndarray):
        if points.size == 0:
            return np.zeros((0, 3), dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"Expected an (N, 3) point array, got shape {points.shape}.")
        arr = np.asarray(points, dtype=np.float64)
    else:
        rows = [tuple(item[:3]) for item in points if len(item) >= 3]
        if not rows:
            return np.zeros((0, 3), dtype=np.float64)
        arr = np.asarray(rows, dtype=np.float64)

    finite = np.all(np.isfinite(arr), axis=1)
    return arr[finite]
