from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

from wayfinder.actuator_output import SERVO_CENTER_DEG, clamp_servo_angle
from wayfinder.events import EventChannel
from wayfinder.geometry import (
    Vec3,
    clip,
    distance,
    distance_to_segment,
    horizontal_bearing_rad,
    wrap_degrees,
)
from wayfinder.graph import SpatialGraph
from wayfinder.planner import Route, RoutePlanner
from wayfinder.poi import PointOfInterest
from wayfinder.pose_ingest import CameraPose
from wayfinder.speech import SpeechQueue

logger = logging.getLogger(__name__)


class Actuator(Protocol):
    def send_angle(self, angle: int) -> Tuple[bool, str]:
        ...


@dataclass
class GuidanceConfig:
    waypoint_proximity_m: float = 1.5
    off_route_threshold_m: float = 3.0
    off_route_dwell_s: float = 3.0
    servo_update_interval_s: float = 1.0
    servo_angle_threshold_deg: int = 30
    turn_around_threshold_deg: float = 120.0
    front_arc_deg: float = 90.0
    milestones_m: Tuple[float, ...] = (50.0, 20.0, 10.0, 5.0, 2.0)
    spoken_milestone_floor_m: float = 10.0


@dataclass
class NavigationSession:
    route: Route
    destination: PointOfInterest
    waypoint_index: int = 0
    off_route_started_s: Optional[float] = None
    last_milestone_m: float = math.inf
    last_servo_angle: int = SERVO_CENTER_DEG
    last_servo_update_s: Optional[float] = None
    turn_around_announced: bool = False
    distance_to_next_m: float = 0.0
    distance_to_destination_m: float = 0.0
    stats: Dict[str, int] = field(default_factory=lambda: {"poses": 0, "ignored": 0})

    @property
    def waypoints(self) -> Tuple[Vec3, ...]:
        return self.route.waypoints

    @property
    def finished(self) -> bool:
        return self.waypoint_index >= len(self.route.waypoints)


class GuidanceEngine:
    """
    Navigation state machine: Idle -> Navigating -> Idle.

    Each trackable pose while navigating runs, in order: distance bookkeeping,
    waypoint advance (possibly arriving), off-route dwell detection, distance
    milestones and the throttled actuator bearing update. Low or unavailable
    confidence poses are ignored entirely.
    """

    def __init__(
        self,
        actuator: Actuator,
        speech: SpeechQueue,
        config: Optional[GuidanceConfig] = None,
        planner: Optional[RoutePlanner] = None,
        events: Optional[EventChannel] = None,
    ) -> None:
        self._cfg = config or GuidanceConfig()
        self._actuator = actuator
        self._speech = speech
        self._planner = planner or RoutePlanner()
        self._events = events or EventChannel()

        self._session: Optional[NavigationSession] = None
        self.last_actuator_error: str = ""

    @property
    def config(self) -> GuidanceConfig:
        return self._cfg

    @property
    def is_navigating(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Optional[NavigationSession]:
        return self._session

    def attach_actuator(self, actuator: Actuator) -> None:
        self._actuator = actuator

    def hold(self) -> None:
        """Centre the actuator without ending the session, e.g. while tracking is lost."""
        session = self._session
        if session is None:
            return
        self._set_servo(SERVO_CENTER_DEG)
        session.last_servo_angle = SERVO_CENTER_DEG
        session.last_servo_update_s = None

    def start(self, current_position: Vec3, poi: PointOfInterest, graph: SpatialGraph) -> bool:
        if self._session is not None:
            logger.info("Navigation request for %r ignored: already navigating.", poi.name)
            return False

        route = self._planner.plan_route(graph, current_position, poi.position)
        if route is None:
            self._speak(f"Unable to find route to {poi.name}")
            self._events.publish("route_unavailable", {"destination": poi})
            return False

        self._session = NavigationSession(route=route, destination=poi)
        total_m = route.total_distance_m

        self._events.publish("route_planned", {"destination": poi, "route": route})
        self._speak(f"Navigation started to {poi.name}. Distance: {int(total_m)} meters")
        self._set_servo(SERVO_CENTER_DEG)
        return True

    def stop(self) -> bool:
        if self._session is None:
            return False
        destination = self._session.destination
        self._session = None
        self._set_servo(SERVO_CENTER_DEG)
        self._events.publish("navigation_stopped", {"destination": destination})
        return True

    def add_pose(self, pose: CameraPose) -> None:
        session = self._session
        if session is None:
            return
        if not pose.is_trackable:
            session.stats["ignored"] += 1
            return
        session.stats["poses"] += 1

        position = pose.position
        self._update_distances(session, position)

        if self._check_waypoint_proximity(session, position):
            return

        self._check_off_route(session, position, pose.timestamp_s)
        self._check_milestones(session)
        self._update_servo_direction(session, pose)

    def debug_snapshot(self) -> Dict[str, Any]:
        session = self._session
        if session is None:
            return {"navigating": False}
        return {
            "navigating": True,
            "destination": session.destination.name,
            "waypoint_index": session.waypoint_index,
            "waypoint_count": len(session.waypoints),
            "distance_to_next_m": round(session.distance_to_next_m, 2),
            "distance_to_destination_m": round(session.distance_to_destination_m, 2),
            "off_route": session.off_route_started_s is not None,
            "last_servo_angle": session.last_servo_angle,
            "poses": session.stats["poses"],
            "ignored_poses": session.stats["ignored"],
        }

    def _update_distances(self, session: NavigationSession, position: Vec3) -> None:
        if session.finished:
            return
        waypoints = session.waypoints
        next_waypoint = waypoints[session.waypoint_index]
        session.distance_to_next_m = distance(position, next_waypoint)

        total = session.distance_to_next_m
        for i in range(session.waypoint_index, len(waypoints) - 1):
            total += distance(waypoints[i], waypoints[i + 1])
        session.distance_to_destination_m = total

    def _check_waypoint_proximity(self, session: NavigationSession, position: Vec3) -> bool:
        """Advance past a reached waypoint. Returns True once the route is finished."""
        if session.finished:
            return True

        waypoint = session.waypoints[session.waypoint_index]
        if distance(position, waypoint) >= self._cfg.waypoint_proximity_m:
            return False

        session.waypoint_index += 1
        session.turn_around_announced = False
        self._events.publish("waypoint_advanced", {"index": session.waypoint_index})

        if session.finished:
            self._arrive(session)
            return True
        return False

    def _arrive(self, session: NavigationSession) -> None:
        self._session = None
        self._set_servo(SERVO_CENTER_DEG)
        self._speak(f"You have arrived at {session.destination.name}")
        self._events.publish("arrived", {"destination": session.destination})

    def _check_off_route(self, session: NavigationSession, position: Vec3, now_s: float) -> None:
        index = session.waypoint_index
        waypoints = session.waypoints
        segment_start = waypoints[index - 1] if index > 0 else position
        segment_end = waypoints[index]

        off_by_m = distance_to_segment(position, segment_start, segment_end)
        if off_by_m <= self._cfg.off_route_threshold_m:
            session.off_route_started_s = None
            return

        if session.off_route_started_s is None:
            session.off_route_started_s = now_s
            return

        if (now_s - session.off_route_started_s) > self._cfg.off_route_dwell_s:
            last_waypoint = waypoints[index - 1] if index > 0 else waypoints[0]
            distance_back = distance(position, last_waypoint)
            self._speak(f"You are off route. Return to path. {int(distance_back)} meters back")
            self._events.publish("off_route", {"distance_m": off_by_m})
            session.off_route_started_s = None

    def _check_milestones(self, session: NavigationSession) -> None:
        remaining = session.distance_to_destination_m
        crossed = [
            m for m in self._cfg.milestones_m
            if remaining < m and m < session.last_milestone_m
        ]
        if not crossed:
            return

        milestone = min(crossed)
        session.last_milestone_m = milestone
        if milestone >= self._cfg.spoken_milestone_floor_m:
            self._speak(f"{int(milestone)} meters to destination")
        else:
            self._speak("Destination is very close")

    def _update_servo_direction(self, session: NavigationSession, pose: CameraPose) -> None:
        if session.finished:
            return

        now_s = pose.timestamp_s
        if (
            session.last_servo_update_s is not None
            and (now_s - session.last_servo_update_s) < self._cfg.servo_update_interval_s
        ):
            return

        target = session.waypoints[session.waypoint_index]
        if math.hypot(target[0] - pose.position[0], target[2] - pose.position[2]) < 1e-6:
            return
        relative_deg = relative_bearing_deg(pose.position, pose.yaw_rad, target)

        if abs(relative_deg) > self._cfg.turn_around_threshold_deg and not session.turn_around_announced:
            session.turn_around_announced = True
            self._speak("Turn around")

        new_angle = servo_angle_for_bearing(relative_deg, self._cfg.front_arc_deg)
        if abs(new_angle - session.last_servo_angle) >= self._cfg.servo_angle_threshold_deg:
            self._set_servo(new_angle)
            session.last_servo_angle = new_angle
            session.last_servo_update_s = now_s

    def _set_servo(self, angle: int) -> None:
        angle = clamp_servo_angle(angle)
        ok, msg = self._actuator.send_angle(angle)
        if not ok and msg:
            self.last_actuator_error = msg
            logger.warning("Actuator command failed: %s", msg)
        self._events.publish("actuator", {"angle": angle, "ok": ok})

    def _speak(self, text: str) -> None:
        self._speech.speak(text)
        self._events.publish("utterance", {"text": text})


def relative_bearing_deg(user_position: Vec3, user_yaw_rad: float, target: Vec3) -> float:
    bearing_rad = horizontal_bearing_rad(user_position, target)
    return wrap_degrees(math.degrees(bearing_rad - user_yaw_rad))


def servo_angle_for_bearing(relative_deg: float, front_arc_deg: float = 90.0) -> int:
    """Map a relative bearing onto the servo: ahead is 90, right-hand targets go lower."""
    clamped = clip(relative_deg, -front_arc_deg, front_arc_deg)
    return clamp_servo_angle(int(SERVO_CENTER_DEG - clamped))
