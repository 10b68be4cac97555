from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass
class PoseCounters:
    total_frames: int = 0
    dropped_frames: int = 0
    last_seq: int = -1
    last_timestamp_s: float = 0.0


class PhaseStateMachine:
    """Thread-safe phase/state holder for the guidance service."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self.phase: str = "idle"  # idle | recording | navigating
        self.map_name: Optional[str] = None
        self.destination: str = ""
        self.status_text: str = "Ready. Load or record a map."
        self.relocalized: bool = False

        self.pose = PoseCounters()
        self.last_pose_received_monotonic_s: Optional[float] = None
        self.stream_stale_reported: bool = False

    def set_map(self, map_name: Optional[str]) -> None:
        with self._lock:
            self.map_name = map_name
            self.relocalized = False
            if map_name:
                self.status_text = f"Map '{map_name}' loaded."

    def start_recording(self, map_name: str, extend: bool) -> Tuple[bool, str]:
        with self._lock:
            if self.phase == "navigating":
                return False, "Stop navigation before recording."
            if self.phase == "recording":
                return False, "Already recording."

            self.phase = "recording"
            self.map_name = map_name
            if extend:
                self.status_text = f"Extending map '{map_name}'."
            else:
                self.status_text = f"Recording new map '{map_name}'."
            return True, self.status_text

    def stop_recording(self) -> Tuple[bool, str]:
        with self._lock:
            if self.phase != "recording":
                return False, "Not recording."
            self.phase = "idle"
            self.status_text = f"Recording of '{self.map_name}' stopped."
            return True, self.status_text

    def start_navigation(self, destination: str) -> Tuple[bool, str]:
        with self._lock:
            if self.phase == "recording":
                return False, "Stop recording before navigating."
            if self.phase == "navigating":
                return False, "Already navigating."
            self.phase = "navigating"
            self.destination = destination
            self.stream_stale_reported = False
            self.status_text = f"Navigating to {destination}."
            return True, self.status_text

    def finish_navigation(self, status_text: str) -> None:
        with self._lock:
            if self.phase != "navigating":
                return
            self.phase = "idle"
            self.destination = ""
            self.status_text = status_text

    def update_status(self, status_text: str) -> None:
        with self._lock:
            if status_text.strip():
                self.status_text = status_text.strip()

    def mark_relocalized(self) -> bool:
        """Returns True on the first trackable pose after a map load."""
        with self._lock:
            if self.relocalized:
                return False
            self.relocalized = True
            return True

    def record_pose_frame(self, seq: int, timestamp_s: float) -> None:
        with self._lock:
            self.pose.total_frames += 1
            self.pose.last_seq = int(seq)
            self.pose.last_timestamp_s = float(timestamp_s)
            self.last_pose_received_monotonic_s = time.monotonic()
            self.stream_stale_reported = False

    def record_pose_drop(self) -> None:
        with self._lock:
            self.pose.dropped_frames += 1

    def seconds_since_last_pose(self) -> Optional[float]:
        with self._lock:
            if self.last_pose_received_monotonic_s is None:
                return None
            return max(0.0, time.monotonic() - self.last_pose_received_monotonic_s)

    def mark_stream_stale(self) -> bool:
        """Returns True the first time a stale stream is reported since the last frame."""
        with self._lock:
            if self.stream_stale_reported:
                return False
            self.stream_stale_reported = True
            return True

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            if self.last_pose_received_monotonic_s is None:
                since_last_frame = None
            else:
                since_last_frame = max(
                    0.0,
                    time.monotonic() - self.last_pose_received_monotonic_s,
                )

            return {
                "phase": self.phase,
                "map_name": self.map_name,
                "destination": self.destination,
                "status_text": self.status_text,
                "relocalized": self.relocalized,
                "ui": {
                    "can_record": self.phase == "idle",
                    "can_navigate": self.phase == "idle" and self.relocalized,
                    "can_stop": self.phase in ("recording", "navigating"),
                },
                "pose": {
                    "total_frames": self.pose.total_frames,
                    "dropped_frames": self.pose.dropped_frames,
                    "last_seq": self.pose.last_seq,
                    "last_timestamp_s": self.pose.last_timestamp_s,
                    "seconds_since_last_frame": since_last_frame,
                },
            }
