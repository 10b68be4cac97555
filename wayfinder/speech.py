from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

Synthesizer = Callable[[str], Any]


class SpeechQueue:
    """
    Serialises utterances onto a single synthesizer.

    ``speak`` records the utterance and appends it to a FIFO, then returns.
    One daemon worker thread feeds the synthesizer one utterance at a time, so
    two utterances never overlap and callers never wait for audio.
    """

    def __init__(self, synthesizer: Optional[Synthesizer] = None) -> None:
        self._synthesizer = synthesizer
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._pending: Deque[str] = deque()
        self._speaking = False
        self._closing = False
        self._worker: Optional[threading.Thread] = None

        self.last_message: str = ""
        self.spoken: List[str] = []
        self.max_history = 50

    def attach_synthesizer(self, synthesizer: Optional[Synthesizer]) -> None:
        with self._lock:
            self._synthesizer = synthesizer

    @property
    def is_speaking(self) -> bool:
        with self._lock:
            return self._speaking

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def speak(self, text: str) -> None:
        text = str(text).strip()
        if not text:
            return

        logger.info("Voice: %s", text)
        with self._changed:
            self.last_message = text
            self.spoken.append(text)
            if len(self.spoken) > self.max_history:
                self.spoken = self.spoken[-self.max_history :]

            self._pending.append(text)
            self._ensure_worker()
            self._changed.notify_all()

    def wait_until_idle(self, timeout_s: Optional[float] = None) -> bool:
        """Block until every queued utterance has been delivered."""
        with self._changed:
            return self._changed.wait_for(
                lambda: not self._pending and not self._speaking, timeout=timeout_s
            )

    def close(self, timeout_s: float = 2.0) -> None:
        with self._changed:
            self._closing = True
            self._pending.clear()
            self._changed.notify_all()
            worker = self._worker

        if worker is not None and worker.is_alive() and worker is not threading.current_thread():
            worker.join(timeout=timeout_s)

        with self._lock:
            if self._worker is not None and not self._worker.is_alive():
                self._worker = None
            self._closing = False

    def _ensure_worker(self) -> None:
        # Caller holds the lock.
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run, name="WayfinderSpeech", daemon=True)
        self._worker.start()

    def _run(self) -> None:
        while True:
            with self._changed:
                while not self._pending and not self._closing:
                    self._changed.wait()
                if self._closing:
                    return
                utterance = self._pending.popleft()
                synthesizer = self._synthesizer
                self._speaking = True

            try:
                self._deliver(synthesizer, utterance)
            finally:
                with self._changed:
                    self._speaking = False
                    self._changed.notify_all()

    def _deliver(self, synthesizer: Optional[Synthesizer], utterance: str) -> None:
        if synthesizer is None:
            return
        try:
            synthesizer(utterance)
        except Exception as exc:
            logger.warning("Speech synthesizer failed for %r: %s", utterance, exc)


class Pyttsx3Synthesizer:
    """Blocking text-to-speech through a local pyttsx3 engine.

    The engine is created on first use so it lives on the speech worker thread.
    """

    def __init__(self, rate_wpm: int = 160) -> None:
        import pyttsx3

        self._pyttsx3 = pyttsx3
        self._rate_wpm = int(rate_wpm)
        self._engine: Any = None

    def __call__(self, text: str) -> None:
        if self._engine is None:
            self._engine = self._pyttsx3.init()
            self._engine.setProperty("rate", self._rate_wpm)
        self._engine.say(text)
        self._engine.runAndWait()
