from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], None]


class EventChannel:
    """Synchronous notification channel from the core to any presentation layer."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[EventCallback]] = {}

    def subscribe(self, event_type: str, callback: EventCallback) -> None:
        self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event_type: str, data: Any = None) -> None:
        for callback in list(self._subscribers.get(event_type, [])):
            try:
                callback(data)
            except Exception:
                logger.exception("Error in %s event callback", event_type)
