from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
import uvicorn

from wayfinder.actuator_output import ServoControlConfig, TextServoLink, ViamServoController, open_serial_link
from wayfinder.config import GuideConfig, load_guide_config
from wayfinder.controller import GuideController
from wayfinder.events import EventChannel
from wayfinder.geometry import Vec3, vec3
from wayfinder.pose_ingest import PoseIngestor
from wayfinder.speech import Pyttsx3Synthesizer, SpeechQueue
from wayfinder.state_machine import PhaseStateMachine
from wayfinder.storage import MapStore

REPO_ROOT = Path(__file__).resolve().parent.parent
CONFIG, CONFIG_WARNING = load_guide_config(REPO_ROOT)


def _maps_dir(config: GuideConfig) -> Path:
    path = Path(config.maps_dir).expanduser()
    if not path.is_absolute():
        path = REPO_ROOT / path
    return path


def build_controller(config: GuideConfig, maps_dir: Path) -> GuideController:
    return GuideController(
        config=config,
        store=MapStore(maps_dir),
        actuator=TextServoLink(),
        speech=SpeechQueue(),
        state=PhaseStateMachine(),
        events=EventChannel(),
    )


CONTROLLER = build_controller(CONFIG, _maps_dir(CONFIG))
SERIAL_LINK: Optional[TextServoLink] = None
VIAM_SERVO = ViamServoController()
WATCHDOG_TASK: Optional[asyncio.Task[Any]] = None

app = FastAPI(title="Wayfinder Guidance Service", version="0.1.0")


def _require_token(token: str) -> None:
    expected = CONFIG.api_token.strip()
    if not expected:
        return
    if token.strip() != expected:
        raise HTTPException(status_code=401, detail="Invalid API token.")


def _servo_config_from_service(defaults: GuideConfig) -> ServoControlConfig:
    return ServoControlConfig(
        robot_address=defaults.robot_address,
        api_key_id=defaults.api_key_id,
        api_key=defaults.api_key,
        servo_name=defaults.servo_name,
    )


def _state_payload() -> Dict[str, Any]:
    snapshot = CONTROLLER.state.snapshot()
    snapshot["actuator_link"] = _actuator_link_name()
    snapshot["guide"] = CONTROLLER.debug_snapshot()
    return snapshot


def _actuator_link_name() -> str:
    if VIAM_SERVO.is_connected:
        return "viam"
    if SERIAL_LINK is not None and SERIAL_LINK.is_connected:
        return "serial"
    return "disconnected"


def _position_from_body(body: Dict[str, Any]) -> Optional[Vec3]:
    raw = body.get("position")
    if raw is None:
        return None
    try:
        return vec3(raw)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid position: {exc}") from exc


def _close_actuators() -> None:
    global SERIAL_LINK

    if SERIAL_LINK is not None:
        SERIAL_LINK.close()
        SERIAL_LINK = None
    VIAM_SERVO.close()
    CONTROLLER.attach_actuator(TextServoLink())


async def _watchdog_loop() -> None:
    while True:
        await asyncio.sleep(0.25)

        stale_for_s = CONTROLLER.state.seconds_since_last_pose()
        if stale_for_s is None:
            continue

        if CONTROLLER.state.snapshot()["phase"] != "navigating":
            continue

        if stale_for_s > CONFIG.pose_stream_timeout_s:
            if CONTROLLER.handle_stream_timeout(stale_for_s):
                logging.warning(
                    "Pose stream timeout (%.1fs > %.1fs). Actuator centred.",
                    stale_for_s,
                    CONFIG.pose_stream_timeout_s,
                )


@app.on_event("startup")
async def _on_startup() -> None:
    global WATCHDOG_TASK, SERIAL_LINK

    logging.basicConfig(level=getattr(logging, CONFIG.log_level, logging.INFO))
    if CONFIG_WARNING:
        logging.warning(CONFIG_WARNING)

    if CONFIG.speech_backend == "pyttsx3":
        try:
            CONTROLLER.attach_speech_synthesizer(Pyttsx3Synthesizer())
        except Exception as exc:
            logging.warning("pyttsx3 unavailable, speaking to the log only: %s", exc)

    if CONFIG.serial_port:
        link, msg = open_serial_link(CONFIG.serial_port, CONFIG.serial_baud)
        if link is not None:
            SERIAL_LINK = link
            CONTROLLER.attach_actuator(link)
            logging.info(msg)
        else:
            logging.warning("Actuator serial auto-connect failed: %s", msg)
    elif CONFIG.robot_address and CONFIG.api_key_id and CONFIG.api_key:
        ok, msg = VIAM_SERVO.connect(_servo_config_from_service(CONFIG))
        if ok:
            CONTROLLER.attach_actuator(VIAM_SERVO)
            logging.info(msg)
        else:
            logging.warning("Actuator auto-connect failed: %s", msg)

    WATCHDOG_TASK = asyncio.create_task(_watchdog_loop())


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    global WATCHDOG_TASK

    CONTROLLER.close()

    if WATCHDOG_TASK is not None:
        WATCHDOG_TASK.cancel()
        try:
            await WATCHDOG_TASK
        except asyncio.CancelledError:
            pass
        WATCHDOG_TASK = None

    try:
        _close_actuators()
    except Exception as exc:
        logging.debug("Closing actuators failed: %s", exc)


@app.get("/health")
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "service": "wayfinder",
        "phase": CONTROLLER.state.snapshot()["phase"],
        "actuator_link": _actuator_link_name(),
        "guidance": CONTROLLER.guidance.debug_snapshot(),
    }


@app.get("/state")
def get_state(
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    return _state_payload()


@app.get("/maps")
def list_maps(
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    return {"ok": True, "maps": CONTROLLER.list_maps()}


@app.post("/maps/{map_name}/load")
async def load_map(
    map_name: str,
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    ok, msg = CONTROLLER.load_map(map_name)
    if not ok:
        raise HTTPException(status_code=400, detail=msg)
    return {"ok": True, "message": msg, "state": _state_payload()}


@app.post("/maps/{map_name}/save")
async def save_map(
    map_name: str,
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    ok, msg = CONTROLLER.save_map(map_name)
    if not ok:
        raise HTTPException(status_code=400, detail=msg)
    return {"ok": True, "message": msg}


@app.delete("/maps/{map_name}")
async def delete_map(
    map_name: str,
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    ok, msg = CONTROLLER.delete_map(map_name)
    if not ok:
        raise HTTPException(status_code=400, detail=msg)
    return {"ok": True, "message": msg}


@app.post("/recording/start")
async def recording_start(
    payload: Dict[str, Any] = Body(...),
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")

    map_name = str(payload.get("map_name", "")).strip()
    extend = bool(payload.get("extend", False))

    ok, msg = CONTROLLER.start_recording(map_name, extend=extend)
    return {"ok": ok, "message": msg, "state": _state_payload()}


@app.post("/recording/stop")
async def recording_stop(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")

    body = payload or {}
    save = bool(body.get("save", True))

    ok, msg = CONTROLLER.stop_recording(save=save)
    return {"ok": ok, "message": msg, "state": _state_payload()}


@app.get("/pois")
def list_pois(
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    return {"ok": True, "pois": [poi.to_dict() for poi in CONTROLLER.pois.all()]}


@app.post("/pois")
async def add_poi(
    payload: Dict[str, Any] = Body(...),
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")

    name = str(payload.get("name", "")).strip()
    ok, msg, poi = CONTROLLER.add_poi(name, _position_from_body(payload))
    if not ok or poi is None:
        raise HTTPException(status_code=400, detail=msg)
    return {"ok": True, "message": msg, "poi": poi.to_dict()}


@app.patch("/pois/{poi_id}")
async def update_poi(
    poi_id: str,
    payload: Dict[str, Any] = Body(...),
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")

    messages = []
    if "name" in payload:
        ok, msg = CONTROLLER.rename_poi(poi_id, str(payload.get("name", "")))
        if not ok:
            raise HTTPException(status_code=400, detail=msg)
        messages.append(msg)
    if "position" in payload or bool(payload.get("use_current_position", False)):
        ok, msg = CONTROLLER.move_poi(poi_id, _position_from_body(payload))
        if not ok:
            raise HTTPException(status_code=400, detail=msg)
        messages.append(msg)

    if not messages:
        raise HTTPException(status_code=400, detail="Nothing to update.")

    poi = CONTROLLER.pois.get(poi_id)
    return {"ok": True, "message": " ".join(messages), "poi": poi.to_dict() if poi else None}


@app.delete("/pois/{poi_id}")
async def delete_poi(
    poi_id: str,
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    ok, msg = CONTROLLER.delete_poi(poi_id)
    if not ok:
        raise HTTPException(status_code=400, detail=msg)
    return {"ok": True, "message": msg}


@app.post("/navigation/start")
async def navigation_start(
    payload: Dict[str, Any] = Body(...),
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")

    destination = str(payload.get("destination", "")).strip()
    if not destination:
        raise HTTPException(status_code=400, detail="destination is required")

    ok, msg = CONTROLLER.start_navigation(destination)
    return {"ok": ok, "message": msg, "state": _state_payload()}


@app.post("/navigation/stop")
async def navigation_stop(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")

    body = payload or {}
    ok, msg = CONTROLLER.stop_navigation(announce_when_idle=bool(body.get("voice", False)))
    return {"ok": ok, "message": msg, "state": _state_payload()}


@app.post("/voice/where-am-i")
async def voice_where_am_i(
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    return {"ok": True, "message": CONTROLLER.where_am_i()}


@app.post("/voice/repeat")
async def voice_repeat(
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    return {"ok": True, "message": CONTROLLER.repeat_last()}


@app.post("/actuator/connect")
def actuator_connect(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    global SERIAL_LINK

    _require_token(x_api_token or "")

    body = payload or {}
    transport = str(body.get("transport", "serial" if CONFIG.serial_port else "viam")).strip().lower()

    if transport == "serial":
        port = str(body.get("serial_port", CONFIG.serial_port)).strip()
        baud = int(body.get("serial_baud", CONFIG.serial_baud))
        link, msg = open_serial_link(port, baud)
        if link is None:
            raise HTTPException(status_code=400, detail=msg)
        _close_actuators()
        SERIAL_LINK = link
        CONTROLLER.attach_actuator(link)
        return {"ok": True, "message": msg}

    if transport == "viam":
        cfg = ServoControlConfig(
            robot_address=str(body.get("robot_address", CONFIG.robot_address)).strip(),
            api_key_id=str(body.get("api_key_id", CONFIG.api_key_id)).strip(),
            api_key=str(body.get("api_key", CONFIG.api_key)).strip(),
            servo_name=str(body.get("servo_name", CONFIG.servo_name)).strip() or "guide_servo",
        )
        if SERIAL_LINK is not None:
            SERIAL_LINK.close()
            SERIAL_LINK = None
        ok, msg = VIAM_SERVO.connect(cfg)
        if not ok:
            raise HTTPException(status_code=400, detail=msg)
        CONTROLLER.attach_actuator(VIAM_SERVO)
        return {"ok": True, "message": msg}

    raise HTTPException(status_code=400, detail=f"Unsupported transport: {transport}")


@app.post("/actuator/disconnect")
def actuator_disconnect(
    x_api_token: Optional[str] = Header(default="", alias="X-API-Token"),
) -> Dict[str, Any]:
    _require_token(x_api_token or "")
    _close_actuators()
    return {"ok": True, "message": "Actuator disconnected."}


@app.websocket("/stream/pose")
async def ws_pose_stream(websocket: WebSocket) -> None:
    expected = CONFIG.api_token.strip()
    token = websocket.query_params.get("token", "")
    if expected and token.strip() != expected:
        await websocket.close(code=1008)
        return

    await websocket.accept()

    try:
        while True:
            packet = await websocket.receive()

            if packet.get("type") == "websocket.disconnect":
                break

            text_payload = packet.get("text")
            bytes_payload = packet.get("bytes")

            try:
                if text_payload is not None:
                    await _handle_text_ws_message(websocket, text_payload)
                elif bytes_payload is not None:
                    CONTROLLER.handle_frame(PoseIngestor.decode_binary_packet(bytes_payload))
                else:
                    await websocket.send_json({"type": "warn", "message": "Empty websocket packet."})
            except ValueError as exc:
                await websocket.send_json({"type": "error", "message": str(exc)})

    except WebSocketDisconnect:
        return


async def _handle_text_ws_message(websocket: WebSocket, message: str) -> None:
    trimmed = message.strip()
    if not trimmed:
        return

    if trimmed.lower() == "ping":
        await websocket.send_text("pong")
        return

    try:
        payload = json.loads(trimmed)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Text websocket payload must be a JSON object.")

    msg_type = str(payload.get("type", "")).strip()
    if msg_type == "pose_frame":
        CONTROLLER.handle_frame(PoseIngestor.decode_text_payload(payload))
        return

    if msg_type == "status":
        CONTROLLER.state.update_status(str(payload.get("status_text", "")))
        return

    raise ValueError(f"Unsupported websocket message type: {msg_type}")


def main() -> None:
    uvicorn.run(
        "wayfinder.main:app",
        host=CONFIG.host,
        port=CONFIG.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
