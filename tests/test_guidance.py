"""Unit tests for the GuidanceEngine navigation state machine."""

import math
import time

import pytest

from conftest import FakeActuator, corridor_graph, make_pose
from wayfinder.events import EventChannel
from wayfinder.graph import SpatialGraph
from wayfinder.guidance import GuidanceConfig, GuidanceEngine, relative_bearing_deg, servo_angle_for_bearing
from wayfinder.poi import PointOfInterest
from wayfinder.pose_ingest import TrackingConfidence
from wayfinder.speech import SpeechQueue

EXIT = PointOfInterest(poi_id="P1", name="Exit", position=(0.0, 0.0, -20.0))


def _engine(**overrides):
    actuator = FakeActuator()
    speech = SpeechQueue()
    engine = GuidanceEngine(actuator=actuator, speech=speech, config=GuidanceConfig(**overrides))
    return engine, actuator, speech


def _start_at(engine, z):
    """Start on the corridor axis at ``z``."""
    assert engine.start((0.0, 0.0, z), EXIT, corridor_graph()) is True


def test_start_announces_total_distance_and_centres():
    engine, actuator, speech = _engine()
    _start_at(engine, 0.5)

    assert engine.is_navigating
    assert speech.spoken == ["Navigation started to Exit. Distance: 20 meters"]
    assert actuator.angles == [90]


def test_restart_while_navigating_is_rejected():
    engine, _, speech = _engine()
    _start_at(engine, 0.5)

    assert engine.start((0.0, 0.0, 0.0), EXIT, corridor_graph()) is False
    assert len(speech.spoken) == 1, "Rejected start must not speak"


def test_unreachable_destination_stays_idle():
    engine, actuator, speech = _engine()
    graph = SpatialGraph()
    graph.merge_or_add_node((0.0, 0.0, 0.0), 1.0)
    graph.merge_or_add_node((0.0, 0.0, -20.0), 1.0)

    assert engine.start((0.0, 0.0, 0.0), EXIT, graph) is False
    assert not engine.is_navigating
    assert speech.spoken == ["Unable to find route to Exit"]
    assert actuator.angles == []


def test_walk_to_destination_advances_and_arrives():
    """Full walk: milestones in order, arrival ends the session."""
    engine, actuator, speech = _engine()
    _start_at(engine, 0.5)

    engine.add_pose(make_pose(0.0, 0.0, 0.5))
    assert engine.session.waypoint_index == 1

    engine.add_pose(make_pose(1.0, 0.0, -0.5))
    assert engine.session.waypoint_index == 2

    engine.add_pose(make_pose(2.0, 0.0, -9.0))
    engine.add_pose(make_pose(3.0, 0.0, -19.0))
    assert engine.session.waypoint_index == 4

    engine.add_pose(make_pose(4.0, 0.0, -19.5))

    assert not engine.is_navigating
    assert speech.spoken == [
        "Navigation started to Exit. Distance: 20 meters",
        "50 meters to destination",
        "20 meters to destination",
        "Destination is very close",
        "You have arrived at Exit",
    ]
    assert actuator.angles[-1] == 90


def test_off_route_announced_once_after_dwell_then_resets():
    engine, _, speech = _engine()
    _start_at(engine, 0.5)
    engine.add_pose(make_pose(0.0, 0.0, 0.5))

    for t in (1.0, 3.0, 4.5, 5.0, 6.0):
        engine.add_pose(make_pose(t, 5.0, -5.0))

    off_route = [text for text in speech.spoken if text.startswith("You are off route")]
    assert off_route == ["You are off route. Return to path. 7 meters back"]
    assert engine.session.off_route_started_s == 5.0, "Timer restarts after an announcement"


def test_returning_to_path_clears_off_route_timer():
    engine, _, speech = _engine()
    _start_at(engine, 0.5)
    engine.add_pose(make_pose(0.0, 0.0, 0.5))

    engine.add_pose(make_pose(1.0, 5.0, -5.0))
    engine.add_pose(make_pose(2.0, 0.0, 0.3))
    engine.add_pose(make_pose(5.0, 5.0, -5.0))

    assert engine.session.off_route_started_s == 5.0
    assert not any(text.startswith("You are off route") for text in speech.spoken)

    engine.add_pose(make_pose(8.5, 5.0, -5.0))
    off_route = [text for text in speech.spoken if text.startswith("You are off route")]
    assert off_route == ["You are off route. Return to path. 7 meters back"], "A fresh excursion earns its own announcement"


def test_turn_around_spoken_once_per_waypoint():
    engine, actuator, speech = _engine()
    _start_at(engine, 3.0)
    engine.add_pose(make_pose(0.0, 0.0, 3.0))

    engine.add_pose(make_pose(1.0, 0.0, 3.0, yaw=math.pi))
    engine.add_pose(make_pose(2.5, 0.0, 3.0, yaw=math.pi))

    assert speech.spoken.count("Turn around") == 1
    assert actuator.angles == [90, 0]


def test_servo_updates_are_throttled_and_thresholded():
    engine, actuator, _ = _engine()
    _start_at(engine, 3.0)
    engine.add_pose(make_pose(0.0, 0.0, 3.0))

    engine.add_pose(make_pose(1.0, 0.0, 3.0, yaw=math.pi / 2))  # target 90 deg to the left
    engine.add_pose(make_pose(1.5, 0.0, 3.0, yaw=0.0))  # inside the update interval
    engine.add_pose(make_pose(2.2, 0.0, 3.0, yaw=0.0))
    engine.add_pose(make_pose(3.5, 0.0, 3.0, yaw=0.2))  # under the angle threshold

    assert actuator.angles == [90, 180, 90]


def test_stop_centres_without_announcement():
    engine, actuator, speech = _engine()
    _start_at(engine, 0.5)

    assert engine.stop() is True
    assert not engine.is_navigating
    assert speech.spoken == ["Navigation started to Exit. Distance: 20 meters"]
    assert actuator.angles == [90, 90]
    assert engine.stop() is False


def test_low_confidence_poses_are_ignored():
    engine, actuator, speech = _engine()
    _start_at(engine, 0.5)

    engine.add_pose(make_pose(0.0, 0.0, 0.5, confidence=TrackingConfidence.LOW))
    engine.add_pose(make_pose(1.0, 30.0, 30.0, confidence=TrackingConfidence.UNAVAILABLE))

    session = engine.session
    assert session.waypoint_index == 0
    assert session.stats == {"poses": 0, "ignored": 2}
    assert len(speech.spoken) == 1
    assert actuator.angles == [90]


def test_failed_actuator_does_not_break_navigation():
    actuator = FakeActuator(ok=False)
    speech = SpeechQueue()
    engine = GuidanceEngine(actuator=actuator, speech=speech)

    assert engine.start((0.0, 0.0, 0.5), EXIT, corridor_graph()) is True
    assert engine.last_actuator_error == "link down"
    engine.add_pose(make_pose(0.0, 0.0, 0.5))
    assert engine.session.waypoint_index == 1


def test_hold_centres_and_allows_immediate_update():
    engine, actuator, _ = _engine()
    _start_at(engine, 3.0)
    engine.add_pose(make_pose(0.0, 0.0, 3.0))
    engine.add_pose(make_pose(1.0, 0.0, 3.0, yaw=math.pi / 2))

    engine.hold()
    engine.add_pose(make_pose(1.2, 0.0, 3.0, yaw=math.pi / 2))

    assert actuator.angles == [90, 180, 90, 180]


def test_events_published_for_presentation_layer():
    events = EventChannel()
    engine = GuidanceEngine(actuator=FakeActuator(), speech=SpeechQueue(), events=events)
    seen = []
    events.subscribe("route_planned", lambda data: seen.append(data["destination"].name))
    _start_at(engine, 0.5)

    assert seen == ["Exit"]


@pytest.mark.parametrize(
    "relative, expected",
    [(0.0, 90), (45.0, 45), (-45.0, 135), (170.0, 0), (-170.0, 180)],
)
def test_servo_angle_for_bearing(relative, expected):
    assert servo_angle_for_bearing(relative) == expected


@pytest.mark.parametrize(
    "target, expected",
    [((0.0, 0.0, -1.0), 0.0), ((1.0, 0.0, 0.0), 90.0), ((-1.0, 0.0, 0.0), -90.0), ((0.0, 0.0, 1.0), 180.0)],
)
def test_relative_bearing_with_zero_yaw(target, expected):
    assert relative_bearing_deg((0.0, 0.0, 0.0), 0.0, target) == pytest.approx(expected)


def test_slow_speech_does_not_block_pose_handling():
    speech = SpeechQueue(synthesizer=lambda text: time.sleep(0.5))
    engine = GuidanceEngine(actuator=FakeActuator(), speech=speech)
    _start_at(engine, 0.5)

    started = time.monotonic()
    engine.add_pose(make_pose(0.0, 0.0, 0.5))
    elapsed = time.monotonic() - started

    assert elapsed < 0.2, f"add_pose waited {elapsed:.2f}s on speech"
    assert speech.spoken[-1] == "50 meters to destination"
    assert speech.wait_until_idle(timeout_s=3.0)
    speech.close()
