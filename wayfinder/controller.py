from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from wayfinder.config import GuideConfig
from wayfinder.events import EventChannel
from wayfinder.geometry import Vec3, vec3
from wayfinder.guidance import Actuator, GuidanceConfig, GuidanceEngine
from wayfinder.graph import SpatialGraph
from wayfinder.pointcloud import PointCloudCollector
from wayfinder.poi import PointOfInterest, PoiRegistry
from wayfinder.pose_ingest import CameraPose, PoseFrame, PoseGate
from wayfinder.recorder import GraphRecorder
from wayfinder.speech import SpeechQueue, Synthesizer
from wayfinder.state_machine import PhaseStateMachine
from wayfinder.storage import MapStore, is_valid_map_name

logger = logging.getLogger(__name__)


def guidance_config_from_service(cfg: GuideConfig) -> GuidanceConfig:
    return GuidanceConfig(
        waypoint_proximity_m=cfg.waypoint_proximity_m,
        off_route_threshold_m=cfg.off_route_threshold_m,
        off_route_dwell_s=cfg.off_route_dwell_s,
        servo_update_interval_s=cfg.servo_update_interval_s,
        servo_angle_threshold_deg=cfg.servo_angle_threshold_deg,
        turn_around_threshold_deg=cfg.turn_around_threshold_deg,
    )


class GuideController:
    """
    Session commands of the guidance service wired onto the core components.

    Pose frames enter through ``handle_frame``; a frame arriving while the
    previous one is still being handled is dropped, never queued. Recording
    feeds the graph recorder, raw path and point cloud; navigating feeds the
    guidance engine.
    """

    def __init__(
        self,
        config: GuideConfig,
        store: MapStore,
        actuator: Actuator,
        speech: SpeechQueue,
        state: Optional[PhaseStateMachine] = None,
        events: Optional[EventChannel] = None,
    ) -> None:
        self._cfg = config
        self._store = store
        self._speech = speech
        self._state = state or PhaseStateMachine()
        self._events = events or EventChannel()

        self._recorder = GraphRecorder(
            sample_distance=config.sample_distance_m,
            merge_distance=config.merge_distance_m,
            junction_distance=config.junction_distance_m,
        )
        self._collector = PointCloudCollector(
            cell_size=config.voxel_size_m,
            max_points=config.max_cloud_points,
        )
        self._pois = PoiRegistry()
        self._raw_path: List[Vec3] = []
        self._recording_height: Optional[float] = None

        self._guidance = GuidanceEngine(
            actuator=actuator,
            speech=speech,
            config=guidance_config_from_service(config),
            events=self._events,
        )
        self._gate = PoseGate()
        self._latest_pose: Optional[CameraPose] = None

    @property
    def state(self) -> PhaseStateMachine:
        return self._state

    @property
    def events(self) -> EventChannel:
        return self._events

    @property
    def guidance(self) -> GuidanceEngine:
        return self._guidance

    @property
    def graph(self) -> SpatialGraph:
        return self._recorder.graph

    @property
    def point_cloud(self) -> PointCloudCollector:
        return self._collector

    @property
    def pois(self) -> PoiRegistry:
        return self._pois

    @property
    def raw_path(self) -> List[Vec3]:
        return list(self._raw_path)

    @property
    def latest_pose(self) -> Optional[CameraPose]:
        return self._latest_pose

    def attach_actuator(self, actuator: Actuator) -> None:
        self._guidance.attach_actuator(actuator)

    def attach_speech_synthesizer(self, synthesizer: Synthesizer) -> None:
        self._speech.attach_synthesizer(synthesizer)

    def close(self) -> None:
        self.stop_navigation()
        self._speech.close()

    # Maps

    def list_maps(self) -> List[str]:
        return self._store.list_maps()

    def load_map(self, map_name: str) -> Tuple[bool, str]:
        if not is_valid_map_name(map_name):
            return False, f"Invalid map name: {map_name!r}"
        if self._state.phase != "idle":
            return False, "Maps can only be loaded while idle."
        if map_name not in self._store.list_maps():
            return False, f"Map '{map_name}' not found."

        self._load_sidecars(map_name)
        self._state.set_map(map_name)
        msg = (
            f"Map '{map_name}' loaded: {self.graph.node_count} nodes, "
            f"{len(self._pois)} places, {self._collector.count} points."
        )
        logger.info(msg)
        self._events.publish("map_loaded", {"map_name": map_name})
        return True, msg

    def save_map(self, map_name: Optional[str] = None) -> Tuple[bool, str]:
        name = map_name or self._state.snapshot()["map_name"]
        if not name:
            return False, "No map selected."
        if not is_valid_map_name(name):
            return False, f"Invalid map name: {name!r}"

        pois = self._pois.merged_with(self._store.load_pois(name))
        results = [
            self._store.save_graph(self.graph, name),
            self._store.save_pois(pois, name),
            self._store.save_path(self._raw_path, name),
            self._store.save_point_cloud(self._collector.points, name),
        ]
        failures = [msg for ok, msg in results if not ok]
        if failures:
            return False, " ".join(failures)

        self._pois.replace_all(pois)
        msg = f"Map '{name}' saved."
        logger.info(msg)
        return True, msg

    def delete_map(self, map_name: str) -> Tuple[bool, str]:
        if not is_valid_map_name(map_name):
            return False, f"Invalid map name: {map_name!r}"
        if self._state.phase != "idle" and self._state.snapshot()["map_name"] == map_name:
            return False, "Cannot delete the active map."
        if not self._store.delete_map(map_name):
            return False, f"Map '{map_name}' not found."
        return True, f"Map '{map_name}' deleted."

    # Recording

    def start_recording(self, map_name: str, extend: bool = False) -> Tuple[bool, str]:
        if not is_valid_map_name(map_name):
            return False, f"Invalid map name: {map_name!r}"
        if self._state.phase != "idle":
            return False, f"Cannot start recording while {self._state.phase}."

        if extend:
            if map_name not in self._store.list_maps():
                return False, f"Map '{map_name}' not found."
            self._load_sidecars(map_name)
        else:
            self._recorder.reset(SpatialGraph())
            self._collector.reset()
            self._pois.replace_all([])
            self._raw_path = []

        self._recording_height = None
        ok, msg = self._state.start_recording(map_name, extend=extend)
        if ok:
            self._events.publish("recording_started", {"map_name": map_name, "extend": extend})
        return ok, msg

    def stop_recording(self, save: bool = True) -> Tuple[bool, str]:
        ok, msg = self._state.stop_recording()
        if not ok:
            return ok, msg
        self._events.publish("recording_stopped", {"map_name": self._state.map_name})
        if save:
            return self.save_map()
        return ok, msg

    # Places

    def add_poi(self, name: str, position: Optional[Vec3] = None) -> Tuple[bool, str, Optional[PointOfInterest]]:
        if not name.strip():
            return False, "A place needs a name.", None
        where = self._resolve_position(position)
        if where is None:
            return False, "Position unavailable.", None
        poi = self._pois.add(name, where)
        self._events.publish("pois_changed", {"added": poi})
        return True, f"Added {poi.name}.", poi

    def rename_poi(self, poi_id: str, name: str) -> Tuple[bool, str]:
        if not name.strip():
            return False, "A place needs a name."
        poi = self._pois.rename(poi_id, name)
        if poi is None:
            return False, f"Unknown place id: {poi_id}"
        self._events.publish("pois_changed", {"renamed": poi})
        return True, f"Renamed to {poi.name}."

    def move_poi(self, poi_id: str, position: Optional[Vec3] = None) -> Tuple[bool, str]:
        where = self._resolve_position(position)
        if where is None:
            return False, "Position unavailable."
        poi = self._pois.move(poi_id, where)
        if poi is None:
            return False, f"Unknown place id: {poi_id}"
        self._events.publish("pois_changed", {"moved": poi})
        return True, f"Moved {poi.name}."

    def delete_poi(self, poi_id: str) -> Tuple[bool, str]:
        if not self._pois.delete(poi_id):
            return False, f"Unknown place id: {poi_id}"
        self._events.publish("pois_changed", {"deleted": poi_id})
        return True, "Place deleted."

    # Navigation

    def start_navigation(self, destination: str) -> Tuple[bool, str]:
        poi = self._pois.get(destination) or self._pois.find_by_name(destination)
        if poi is None:
            self._speech.speak(f"Location not found: {destination}")
            return False, f"Location not found: {destination}"

        pose = self._latest_pose
        if pose is None or not self._state.snapshot()["relocalized"]:
            self._speech.speak("Position unavailable")
            return False, "Position unavailable."

        ok, msg = self._state.start_navigation(poi.name)
        if not ok:
            return ok, msg

        if not self._guidance.start(pose.position, poi, self.graph):
            self._state.finish_navigation(f"No route to {poi.name}.")
            return False, f"Unable to find route to {poi.name}."
        return True, msg

    def stop_navigation(self, announce_when_idle: bool = False) -> Tuple[bool, str]:
        if not self._guidance.stop():
            if announce_when_idle:
                self._speech.speak("No active navigation")
            return False, "No active navigation."
        self._state.finish_navigation("Navigation cancelled.")
        return True, "Navigation cancelled."

    def where_am_i(self) -> str:
        pose = self._latest_pose
        if pose is None:
            message = "Position unavailable"
        else:
            nearest = self._pois.nearest(pose.position)
            if nearest is None:
                message = "No locations available"
            else:
                poi, dist = nearest
                if dist < 5.0:
                    message = f"You are near {poi.name}, {int(dist)} meters away"
                else:
                    message = f"Nearest location is {poi.name}, {int(dist)} meters away"
        self._speech.speak(message)
        return message

    def repeat_last(self) -> str:
        message = self._speech.last_message or "No previous message"
        self._speech.speak(message)
        return message

    # Pose stream

    def handle_frame(self, frame: PoseFrame) -> bool:
        """Process one frame. Returns False when it was dropped."""
        with self._gate.slot() as admitted:
            if not admitted:
                self._state.record_pose_drop()
                logger.debug("Dropped pose frame %s: previous frame still in flight.", frame.seq)
                return False
            self._state.record_pose_frame(frame.seq, frame.pose.timestamp_s)
            self._process_frame(frame)
            return True

    def handle_stream_timeout(self, stale_for_s: float) -> bool:
        if not self._guidance.is_navigating:
            return False
        if not self._state.mark_stream_stale():
            return False
        self._guidance.hold()
        self._state.update_status(f"Pose stream stale for {stale_for_s:.1f}s. Actuator centred.")
        return True

    def debug_snapshot(self) -> Dict[str, Any]:
        return {
            "graph_nodes": self.graph.node_count,
            "graph_edges": self.graph.edge_count,
            "cloud_points": self._collector.count,
            "raw_path_points": len(self._raw_path),
            "pois": len(self._pois),
            "have_pose": self._latest_pose is not None,
            "frames_admitted": self._gate.admitted,
            "frames_dropped": self._gate.dropped,
            "guidance": self._guidance.debug_snapshot(),
            "last_utterance": self._speech.last_message,
        }

    def _process_frame(self, frame: PoseFrame) -> None:
        pose = frame.pose
        if pose.is_trackable:
            self._latest_pose = pose
            if self._state.mark_relocalized():
                self._events.publish("relocalized", {"timestamp_s": pose.timestamp_s})

        phase = self._state.phase
        if phase == "recording" and pose.is_trackable:
            self._raw_path.append(pose.position)
            if self._recorder.add_sample(self._snap_to_recording_height(pose.position)):
                self._events.publish("graph_changed", {"nodes": self.graph.node_count})
            if frame.feature_points.size:
                self._collector.ingest(frame.feature_points)
        elif phase == "navigating":
            destination = self._guidance.session.destination.name if self._guidance.session else ""
            self._guidance.add_pose(pose)
            if not self._guidance.is_navigating:
                self._state.finish_navigation(f"Arrived at {destination}.")

        self._events.publish("pose", pose)

    def _snap_to_recording_height(self, position: Vec3) -> Vec3:
        if not self._cfg.snap_recording_height:
            return position
        if self._recording_height is None:
            self._recording_height = float(position[1])
        return float(position[0]), self._recording_height, float(position[2])

    def _resolve_position(self, position: Optional[Vec3]) -> Optional[Vec3]:
        if position is not None:
            return vec3(position)
        if self._latest_pose is None:
            return None
        return self._latest_pose.position

    def _load_sidecars(self, map_name: str) -> None:
        self._recorder.reset(self._store.load_graph(map_name))
        self._collector.reset(self._store.load_point_cloud(map_name))
        self._pois.replace_all(self._store.load_pois(map_name))
        self._raw_path = self._store.load_path(map_name)
