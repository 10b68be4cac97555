from __future__ import annotations

import base64
import json
import threading
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Optional

import numpy as np

from wayfinder.geometry import Vec3, all_finite, quaternion_to_yaw


class TrackingConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNAVAILABLE = "unavailable"

    @classmethod
    def parse(cls, value: Any) -> "TrackingConfidence":
        text = str(value or "").strip().lower()
        if text in ("notavailable", "not_available", "none", ""):
            return cls.UNAVAILABLE
        return cls(text)


@dataclass(frozen=True)
class CameraPose:
    timestamp_s: float
    position: Vec3
    yaw_rad: float
    confidence: TrackingConfidence = TrackingConfidence.HIGH
    pitch_rad: float = 0.0
    roll_rad: float = 0.0

    @property
    def is_trackable(self) -> bool:
        return self.confidence in (TrackingConfidence.HIGH, TrackingConfidence.MEDIUM)


@dataclass
class PoseFrame:
    seq: int
    pose: CameraPose
    feature_points: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float32))


class PoseGate:
    """Single-slot, drop-newest admission guard around pose handling."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.admitted = 0
        self.dropped = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def slot(self) -> Iterator[bool]:
        acquired = self._lock.acquire(blocking=False)
        if not acquired:
            self.dropped += 1
            yield False
            return
        self.admitted += 1
        try:
            yield True
        finally:
            self._lock.release()


class PoseIngestor:
    """Decode pose frames streamed by the phone's tracking session."""

    @staticmethod
    def decode_text_payload(payload: Dict[str, Any]) -> PoseFrame:
        if payload.get("type") != "pose_frame":
            raise ValueError("Unsupported text message type.")

        pose = _decode_pose(payload)

        points = np.zeros((0, 3), dtype=np.float32)
        points_b64 = payload.get("points_b64")
        if isinstance(points_b64, str) and points_b64:
            points = _decode_points_blob(
                base64.b64decode(points_b64),
                str(payload.get("points_encoding", "f32_xyz_raw")),
            )
        elif isinstance(payload.get("points"), list):
            points = _points_from_list(payload["points"])

        return PoseFrame(seq=int(payload.get("seq", 0)), pose=pose, feature_points=points)

    @staticmethod
    def decode_binary_packet(packet: bytes) -> PoseFrame:
        if len(packet) < 4:
            raise ValueError("Binary packet too short.")

        header_len = int.from_bytes(packet[0:4], byteorder="little", signed=False)
        if header_len <= 0:
            raise ValueError("Invalid binary header length.")

        start = 4
        end = 4 + header_len
        if end > len(packet):
            raise ValueError("Binary packet header length exceeds packet size.")

        try:
            header = json.loads(packet[start:end].decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid binary header JSON: {exc}") from exc

        if not isinstance(header, dict):
            raise ValueError("Binary header must be a JSON object.")
        if header.get("type") != "pose_frame":
            raise ValueError("Binary packet type must be pose_frame.")

        pose = _decode_pose(header)

        payload = memoryview(packet[end:])
        points_byte_count = int(header.get("points_byte_count", 0))
        if points_byte_count < 0 or points_byte_count > len(payload):
            raise ValueError("Invalid points_byte_count in binary header.")

        points = np.zeros((0, 3), dtype=np.float32)
        if points_byte_count > 0:
            points = _decode_points_blob(
                bytes(payload[:points_byte_count]),
                str(header.get("points_encoding", "f32_xyz_raw")),
            )

        return PoseFrame(seq=int(header.get("seq", 0)), pose=pose, feature_points=points)


def _decode_pose(payload: Dict[str, Any]) -> CameraPose:
    pose_raw = payload.get("pose")
    if not isinstance(pose_raw, dict):
        raise ValueError("Frame is missing a pose object.")

    try:
        timestamp_s = float(payload["timestamp_s"])
        position = (float(pose_raw["tx"]), float(pose_raw["ty"]), float(pose_raw["tz"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid pose fields: {exc}") from exc

    pitch_rad = float(pose_raw.get("pitch", 0.0) or 0.0)
    roll_rad = float(pose_raw.get("roll", 0.0) or 0.0)
    if pose_raw.get("yaw") is not None:
        yaw_rad = float(pose_raw["yaw"])
    else:
        try:
            yaw_rad = quaternion_to_yaw(
                qx=float(pose_raw["qx"]),
                qy=float(pose_raw["qy"]),
                qz=float(pose_raw["qz"]),
                qw=float(pose_raw["qw"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Pose needs either yaw or a quaternion: {exc}") from exc

    if not all_finite((timestamp_s, yaw_rad) + position):
        raise ValueError("Pose contains non-finite values.")

    try:
        confidence = TrackingConfidence.parse(payload.get("confidence", "high"))
    except ValueError as exc:
        raise ValueError(f"Unsupported tracking confidence: {payload.get('confidence')}") from exc

    return CameraPose(
        timestamp_s=timestamp_s,
        position=position,
        yaw_rad=yaw_rad,
        confidence=confidence,
        pitch_rad=pitch_rad,
        roll_rad=roll_rad,
    )


def _decode_points_blob(blob: bytes, encoding: str) -> np.ndarray:
    if encoding == "zlib_f32_xyz":
        raw = zlib.decompress(blob)
    elif encoding == "f32_xyz_raw":
        raw = blob
    else:
        raise ValueError(f"Unsupported points encoding: {encoding}")

    if len(raw) % 12 != 0:
        raise ValueError(f"Points payload size {len(raw)} is not a multiple of 12 bytes.")

    arr = np.frombuffer(raw, dtype="<f4")
    return arr.reshape((-1, 3))


def _points_from_list(items: Any) -> np.ndarray:
    rows = [item[:3] for item in items if isinstance(item, list) and len(item) >= 3]
    if not rows:
        return np.zeros((0, 3), dtype=np.float32)
    return np.asarray(rows, dtype=np.float32)
