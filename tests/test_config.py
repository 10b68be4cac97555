"""Unit tests for service configuration loading."""

import json
import os

from wayfinder.config import GuideConfig, load_guide_config


def _clear_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("WAYFINDER_"):
            monkeypatch.delenv(key, raising=False)


def test_defaults_without_settings_file(tmp_path, monkeypatch):
    _clear_env(monkeypatch)

    cfg, warning = load_guide_config(tmp_path)

    assert warning == ""
    assert cfg == GuideConfig()


def test_settings_file_then_env_override(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    (tmp_path / "wayfinder_settings.json").write_text(
        json.dumps({"port": 9000, "voxel_size_m": 0.5, "serial_port": "/dev/ttyUSB0"})
    )
    monkeypatch.setenv("WAYFINDER_PORT", "9100")
    monkeypatch.setenv("WAYFINDER_SNAP_RECORDING_HEIGHT", "false")

    cfg, warning = load_guide_config(tmp_path)

    assert warning == ""
    assert cfg.port == 9100, "Environment wins over the settings file"
    assert cfg.voxel_size_m == 0.5
    assert cfg.serial_port == "/dev/ttyUSB0"
    assert cfg.snap_recording_height is False


def test_out_of_range_and_garbage_values_fall_back(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("WAYFINDER_PORT", "not-a-port")
    monkeypatch.setenv("WAYFINDER_VOXEL_SIZE_M", "-3")
    monkeypatch.setenv("WAYFINDER_SERVO_ANGLE_THRESHOLD_DEG", "900")

    cfg, _ = load_guide_config(tmp_path)

    assert cfg.port == 8765
    assert cfg.voxel_size_m == 0.01
    assert cfg.servo_angle_threshold_deg == 180


def test_invalid_json_is_a_warning(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    settings = tmp_path / "custom.json"
    settings.write_text("[1, 2")
    monkeypatch.setenv("WAYFINDER_SETTINGS", str(settings))

    cfg, warning = load_guide_config(tmp_path)

    assert "Invalid JSON in custom.json" in warning
    assert cfg.port == 8765


def test_unknown_speech_backend_uses_log(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("WAYFINDER_SPEECH_BACKEND", "espeak")

    cfg, warning = load_guide_config(tmp_path)

    assert cfg.speech_backend == "log"
    assert "espeak" in warning
