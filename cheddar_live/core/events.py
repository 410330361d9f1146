"""One-way upward event channels.

The session core never renders anything itself. Status text, streamed
responses and saved turns are pushed to whoever subscribed (UI bridge,
history store, CLI printer).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any


logger = logging.getLogger(__name__)

STATUS = "update-status"
RESPONSE = "update-response"
TURN_SAVED = "save-conversation-turn"
INITIALIZING = "session-initializing"

Handler = Callable[[Any], None]


class EventBus:
    """Synchronous fan-out of events to subscribed handlers.

    A failing handler is logged and never interrupts the emitter or the
    remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, channel: str, handler: Handler) -> None:
        handlers = self._handlers.setdefault(channel, [])
        if handler in handlers:
            return
        handlers.append(handler)

    def unsubscribe(self, channel: str, handler: Handler) -> None:
        handlers = self._handlers.get(channel)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def emit(self, channel: str, data: Any) -> None:
        for handler in list(self._handlers.get(channel, ())):
            try:
                handler(data)
            except Exception:  # noqa: BLE001
                logger.exception("event_handler_failed", extra={"channel": channel})

    def status(self, text: str) -> None:
        self.emit(STATUS, text)
