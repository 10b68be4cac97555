from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger(__name__)

SERVO_MIN_DEG = 0
SERVO_MAX_DEG = 180
SERVO_CENTER_DEG = 90


def clamp_servo_angle(angle: int) -> int:
    return max(SERVO_MIN_DEG, min(SERVO_MAX_DEG, int(angle)))


def format_servo_command(angle: int) -> str:
    return f"centre = {clamp_servo_angle(angle)}\r\n"


class TextServoLink:
    """Best-effort writer of servo text commands onto any text transport."""

    def __init__(self, write: Optional[Callable[[str], Any]] = None) -> None:
        self._write = write
        self.last_command: str = ""

    @property
    def is_connected(self) -> bool:
        return self._write is not None

    def send_angle(self, angle: int) -> Tuple[bool, str]:
        command = format_servo_command(angle)
        self.last_command = command
        if self._write is None:
            return False, "Actuator link is not connected."
        try:
            self._write(command)
            return True, ""
        except Exception as exc:
            return False, f"Failed to send actuator command: {exc}"

    def close(self) -> None:
        self._write = None


class SerialTextWriter:
    """pyserial port wrapper that writes UTF-8 lines to the actuator bridge."""

    def __init__(self, port: str, baudrate: int = 115200, timeout_s: float = 1.0) -> None:
        import serial

        self._serial = serial.Serial(port, int(baudrate), timeout=float(timeout_s))
        self._lock = threading.Lock()

    def __call__(self, text: str) -> None:
        with self._lock:
            self._serial.write(text.encode("utf-8"))

    def close(self) -> None:
        with self._lock:
            self._serial.close()


def open_serial_link(port: str, baudrate: int = 115200) -> Tuple[Optional[TextServoLink], str]:
    if not port.strip():
        return None, "serial_port is required"
    try:
        writer = SerialTextWriter(port.strip(), baudrate=baudrate)
    except ModuleNotFoundError:
        return None, "pyserial is not installed. Install with: python -m pip install pyserial"
    except Exception as exc:
        return None, f"Failed to open serial port {port}: {exc}"
    return TextServoLink(writer), f"Actuator serial link open on {port}."


@dataclass
class ServoControlConfig:
    robot_address: str
    api_key_id: str
    api_key: str
    servo_name: str = "guide_servo"


class ViamServoController:
    """Async-safe Viam servo wrapper driving the guidance actuator."""

    def __init__(self) -> None:
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._loop_ready = threading.Event()

        self._robot: Any = None
        self._servo: Any = None
        self._config: Optional[ServoControlConfig] = None
        self.last_error: str = ""

    @property
    def is_connected(self) -> bool:
        return self._config is not None and self._servo is not None

    def _ensure_loop(self) -> None:
        if self._loop is not None and self._loop_thread is not None and self._loop_thread.is_alive():
            return

        self._loop_ready.clear()

        def _runner() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._loop = loop
            self._loop_ready.set()
            loop.run_forever()
            loop.close()

        self._loop_thread = threading.Thread(target=_runner, name="WayfinderViamLoop", daemon=True)
        self._loop_thread.start()

        if not self._loop_ready.wait(timeout=2.0):
            raise RuntimeError("Timed out starting async loop for actuator control.")

    def _run_coro(self, coro: Any, timeout_s: float) -> Any:
        self._ensure_loop()
        if self._loop is None:
            raise RuntimeError("Async event loop is unavailable.")
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return fut.result(timeout=timeout_s)

    async def _connect_async(self, config: ServoControlConfig) -> None:
        from viam.components.servo import Servo
        from viam.robot.client import RobotClient

        opts = RobotClient.Options.with_api_key(
            api_key=config.api_key,
            api_key_id=config.api_key_id,
        )
        robot = await RobotClient.at_address(config.robot_address, opts)
        servo = Servo.from_robot(robot=robot, name=config.servo_name)

        self._robot = robot
        self._servo = servo

    async def _move_async(self, angle: int) -> None:
        if self._servo is None:
            raise RuntimeError("Servo is not connected.")
        await self._servo.move(angle=clamp_servo_angle(angle))

    async def _disconnect_async(self) -> None:
        try:
            if self._servo is not None:
                await self._move_async(SERVO_CENTER_DEG)
        except Exception as exc:
            logger.debug("Centering servo during disconnect failed: %s", exc)

        try:
            if self._robot is not None:
                await self._robot.close()
        except Exception as exc:
            logger.debug("Closing robot client failed: %s", exc)

        self._robot = None
        self._servo = None
        self._config = None

    def connect(self, config: ServoControlConfig) -> Tuple[bool, str]:
        if not config.robot_address.strip():
            return False, "robot_address is required"
        if not config.api_key_id.strip():
            return False, "api_key_id is required"
        if not config.api_key.strip():
            return False, "api_key is required"
        if not config.servo_name.strip():
            return False, "servo_name is required"

        try:
            self._run_coro(self._disconnect_async(), timeout_s=4.0)
            self._run_coro(self._connect_async(config), timeout_s=15.0)
            self._config = config
            return True, f"Connected to servo '{config.servo_name}'."
        except ModuleNotFoundError:
            return False, "viam-sdk is not installed. Install with: python -m pip install viam-sdk"
        except concurrent.futures.TimeoutError:
            return False, "Timed out connecting to Viam robot."
        except Exception as exc:
            try:
                self._run_coro(self._disconnect_async(), timeout_s=2.0)
            except Exception:
                logger.debug("Cleanup after failed connect also failed.")
            return False, f"Failed to connect: {exc}"

    def send_angle(self, angle: int) -> Tuple[bool, str]:
        """Queue a move on the loop thread and return without awaiting the servo."""
        if self._config is None:
            return False, "Servo controller is not connected."
        try:
            self._ensure_loop()
            if self._loop is None:
                raise RuntimeError("Async event loop is unavailable.")
            fut = asyncio.run_coroutine_threadsafe(self._move_async(angle), self._loop)
        except Exception as exc:
            return False, f"Failed to send servo angle: {exc}"

        fut.add_done_callback(lambda done: self._on_move_done(angle, done))
        return True, ""

    def _on_move_done(self, angle: int, fut: concurrent.futures.Future) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            self.last_error = f"Failed to move servo to {angle}: {exc}"
            logger.warning("Servo move to %s failed: %s", angle, exc)

    def close(self) -> None:
        if self._loop is None:
            self._robot = None
            self._servo = None
            self._config = None
            return

        try:
            self._run_coro(self._disconnect_async(), timeout_s=4.0)
        except Exception as exc:
            logger.debug("Disconnect failed during close: %s", exc)

        loop = self._loop
        loop_thread = self._loop_thread

        if loop is not None:
            try:
                loop.call_soon_threadsafe(loop.stop)
            except RuntimeError:
                pass

        if loop_thread is not None and loop_thread.is_alive():
            loop_thread.join(timeout=1.5)

        self._loop = None
        self._loop_thread = None
        self._loop_ready.clear()
