from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

DEFAULT_SETTINGS_FILENAME = "wayfinder_settings.json"


@dataclass
class GuideConfig:
    host: str = "0.0.0.0"
    port: int = 8765
    api_token: str = ""

    maps_dir: str = "maps"
    pose_stream_timeout_s: float = 2.5

    sample_distance_m: float = 1.0
    merge_distance_m: float = 1.0
    junction_distance_m: float = 1.0
    snap_recording_height: bool = True

    voxel_size_m: float = 0.2
    max_cloud_points: int = 50_000

    waypoint_proximity_m: float = 1.5
    off_route_threshold_m: float = 3.0
    off_route_dwell_s: float = 3.0
    servo_update_interval_s: float = 1.0
    servo_angle_threshold_deg: int = 30
    turn_around_threshold_deg: float = 120.0

    serial_port: str = ""
    serial_baud: int = 115200
    robot_address: str = ""
    api_key_id: str = ""
    api_key: str = ""
    servo_name: str = "guide_servo"

    speech_backend: str = "log"  # log | pyttsx3
    log_level: str = "INFO"


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _to_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    return default


def _clip(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(value)))


def _load_json(path: Path) -> Tuple[Dict[str, Any], str]:
    if not path.exists():
        return {}, ""

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        return {}, f"Failed reading {path.name}: {exc}"

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        return {}, f"Invalid JSON in {path.name}: {exc}"

    if not isinstance(parsed, dict):
        return {}, f"{path.name} must contain a JSON object."

    return parsed, ""


def load_guide_config(base_dir: Path | None = None) -> Tuple[GuideConfig, str]:
    root = base_dir if base_dir is not None else Path.cwd()

    settings_override = os.environ.get("WAYFINDER_SETTINGS", "").strip()
    settings_path = Path(settings_override).expanduser() if settings_override else (root / DEFAULT_SETTINGS_FILENAME)

    raw, warning = _load_json(settings_path)
    notes: List[str] = []
    if warning:
        notes.append(warning)

    def pick_str(env_name: str, json_key: str, default: str = "") -> str:
        env_val = os.environ.get(env_name)
        if env_val is not None and env_val.strip():
            return env_val.strip()
        value = raw.get(json_key, default)
        if value is None:
            return default
        return str(value).strip()

    def pick_num(env_name: str, json_key: str, default: Any) -> Any:
        env_val = os.environ.get(env_name)
        if env_val is not None and env_val.strip():
            return env_val.strip()
        return raw.get(json_key, default)

    defaults = GuideConfig()
    cfg = GuideConfig(
        host=pick_str("WAYFINDER_HOST", "host", defaults.host),
        port=_to_int(pick_num("WAYFINDER_PORT", "port", defaults.port), defaults.port),
        api_token=pick_str("WAYFINDER_API_TOKEN", "api_token", ""),
        maps_dir=pick_str("WAYFINDER_MAPS_DIR", "maps_dir", defaults.maps_dir),
        pose_stream_timeout_s=_to_float(
            pick_num("WAYFINDER_POSE_STREAM_TIMEOUT_S", "pose_stream_timeout_s", defaults.pose_stream_timeout_s),
            defaults.pose_stream_timeout_s,
        ),
        sample_distance_m=_to_float(
            pick_num("WAYFINDER_SAMPLE_DISTANCE_M", "sample_distance_m", defaults.sample_distance_m),
            defaults.sample_distance_m,
        ),
        merge_distance_m=_to_float(
            pick_num("WAYFINDER_MERGE_DISTANCE_M", "merge_distance_m", defaults.merge_distance_m),
            defaults.merge_distance_m,
        ),
        junction_distance_m=_to_float(
            pick_num("WAYFINDER_JUNCTION_DISTANCE_M", "junction_distance_m", defaults.junction_distance_m),
            defaults.junction_distance_m,
        ),
        snap_recording_height=_to_bool(
            pick_num("WAYFINDER_SNAP_RECORDING_HEIGHT", "snap_recording_height", defaults.snap_recording_height),
            defaults.snap_recording_height,
        ),
        voxel_size_m=_to_float(
            pick_num("WAYFINDER_VOXEL_SIZE_M", "voxel_size_m", defaults.voxel_size_m),
            defaults.voxel_size_m,
        ),
        max_cloud_points=_to_int(
            pick_num("WAYFINDER_MAX_CLOUD_POINTS", "max_cloud_points", defaults.max_cloud_points),
            defaults.max_cloud_points,
        ),
        waypoint_proximity_m=_to_float(
            pick_num("WAYFINDER_WAYPOINT_PROXIMITY_M", "waypoint_proximity_m", defaults.waypoint_proximity_m),
            defaults.waypoint_proximity_m,
        ),
        off_route_threshold_m=_to_float(
            pick_num("WAYFINDER_OFF_ROUTE_THRESHOLD_M", "off_route_threshold_m", defaults.off_route_threshold_m),
            defaults.off_route_threshold_m,
        ),
        off_route_dwell_s=_to_float(
            pick_num("WAYFINDER_OFF_ROUTE_DWELL_S", "off_route_dwell_s", defaults.off_route_dwell_s),
            defaults.off_route_dwell_s,
        ),
        servo_update_interval_s=_to_float(
            pick_num("WAYFINDER_SERVO_UPDATE_INTERVAL_S", "servo_update_interval_s", defaults.servo_update_interval_s),
            defaults.servo_update_interval_s,
        ),
        servo_angle_threshold_deg=_to_int(
            pick_num("WAYFINDER_SERVO_ANGLE_THRESHOLD_DEG", "servo_angle_threshold_deg", defaults.servo_angle_threshold_deg),
            defaults.servo_angle_threshold_deg,
        ),
        turn_around_threshold_deg=_to_float(
            pick_num("WAYFINDER_TURN_AROUND_THRESHOLD_DEG", "turn_around_threshold_deg", defaults.turn_around_threshold_deg),
            defaults.turn_around_threshold_deg,
        ),
        serial_port=pick_str("WAYFINDER_SERIAL_PORT", "serial_port", ""),
        serial_baud=_to_int(pick_num("WAYFINDER_SERIAL_BAUD", "serial_baud", defaults.serial_baud), defaults.serial_baud),
        robot_address=pick_str("WAYFINDER_ROBOT_ADDRESS", "robot_address", ""),
        api_key_id=pick_str("WAYFINDER_API_KEY_ID", "api_key_id", ""),
        api_key=pick_str("WAYFINDER_API_KEY", "api_key", ""),
        servo_name=pick_str("WAYFINDER_SERVO_NAME", "servo_name", defaults.servo_name),
        speech_backend=pick_str("WAYFINDER_SPEECH_BACKEND", "speech_backend", defaults.speech_backend).lower(),
        log_level=pick_str("WAYFINDER_LOG_LEVEL", "log_level", defaults.log_level).upper(),
    )

    if not cfg.host:
        cfg.host = "0.0.0.0"
    cfg.port = int(_clip(cfg.port, 1, 65535))
    cfg.pose_stream_timeout_s = _clip(cfg.pose_stream_timeout_s, 0.2, 30.0)

    cfg.sample_distance_m = _clip(cfg.sample_distance_m, 0.1, 10.0)
    cfg.merge_distance_m = _clip(cfg.merge_distance_m, 0.0, 10.0)
    cfg.junction_distance_m = _clip(cfg.junction_distance_m, 0.0, 10.0)

    cfg.voxel_size_m = _clip(cfg.voxel_size_m, 0.01, 5.0)
    cfg.max_cloud_points = int(_clip(cfg.max_cloud_points, 0, 2_000_000))

    cfg.waypoint_proximity_m = _clip(cfg.waypoint_proximity_m, 0.1, 10.0)
    cfg.off_route_threshold_m = _clip(cfg.off_route_threshold_m, 0.5, 50.0)
    cfg.off_route_dwell_s = _clip(cfg.off_route_dwell_s, 0.0, 60.0)
    cfg.servo_update_interval_s = _clip(cfg.servo_update_interval_s, 0.05, 10.0)
    cfg.servo_angle_threshold_deg = int(_clip(cfg.servo_angle_threshold_deg, 0, 180))
    cfg.turn_around_threshold_deg = _clip(cfg.turn_around_threshold_deg, 90.0, 180.0)

    if cfg.speech_backend not in ("log", "pyttsx3"):
        notes.append(f"Unknown speech_backend '{cfg.speech_backend}', using log.")
        cfg.speech_backend = "log"

    return cfg, " ".join(notes).strip()
