from __future__ import annotations

from typing import List, Tuple

import pytest

from wayfinder.graph import SpatialGraph
from wayfinder.pose_ingest import CameraPose, TrackingConfidence
from wayfinder.speech import SpeechQueue


class FakeActuator:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.angles: List[int] = []

    def send_angle(self, angle: int) -> Tuple[bool, str]:
        self.angles.append(angle)
        if self.ok:
            return True, ""
        return False, "link down"


def make_pose(t, x, z, yaw=0.0, y=0.0, confidence=TrackingConfidence.HIGH) -> CameraPose:
    return CameraPose(timestamp_s=float(t), position=(float(x), float(y), float(z)), yaw_rad=float(yaw), confidence=confidence)


def corridor_graph() -> SpatialGraph:
    """Three nodes ten meters apart heading down -Z."""
    graph = SpatialGraph()
    a, _ = graph.merge_or_add_node((0.0, 0.0, 0.0), 1.0)
    b, _ = graph.merge_or_add_node((0.0, 0.0, -10.0), 1.0)
    c, _ = graph.merge_or_add_node((0.0, 0.0, -20.0), 1.0)
    graph.add_edge_between(a, b)
    graph.add_edge_between(b, c)
    return graph


@pytest.fixture
def actuator() -> FakeActuator:
    return FakeActuator()


@pytest.fixture
def speech() -> SpeechQueue:
    return SpeechQueue()
