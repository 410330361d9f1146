from __future__ import annotations

import logging
from collections.abc import Callable

from cheddar_live.core.clock import wall_ms
from cheddar_live.core.events import TURN_SAVED, EventBus
from cheddar_live.session.state import SessionSnapshot, Turn


logger = logging.getLogger(__name__)


class ConversationRecorder:
    """Append-only turn history for the current session.

    Completed turns are announced on the `save-conversation-turn` channel;
    persisting them is the subscriber's job.
    """

    def __init__(self, bus: EventBus, *, clock: Callable[[], int] = wall_ms) -> None:
        self._bus = bus
        self._clock = clock
        self._last_id = 0
        self._session_id = self._new_id()
        self._history: list[Turn] = []

    def _new_id(self) -> str:
        # Time-derived so ids sort by creation; bumped if two land in the same ms.
        candidate = max(self._clock(), self._last_id + 1)
        self._last_id = candidate
        return str(candidate)

    @property
    def session_id(self) -> str:
        return self._session_id

    def reset(self) -> str:
        self._session_id = self._new_id()
        self._history = []
        logger.info("conversation_session_started", extra={"session_id": self._session_id})
        return self._session_id

    def append_turn(self, transcription: str, response: str) -> Turn:
        turn = Turn(timestamp=self._clock(), transcription=transcription.strip(), response=response.strip())
        self._history.append(turn)
        logger.info(
            "conversation_turn_saved",
            extra={
                "session_id": self._session_id,
                "turn_index": len(self._history) - 1,
                "transcription_len": len(turn.transcription),
                "response_len": len(turn.response),
            },
        )
        self._bus.emit(
            TURN_SAVED,
            {"sessionId": self._session_id, "turn": turn, "fullHistory": tuple(self._history)},
        )
        return turn

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(session_id=self._session_id, history=tuple(self._history))

    def transcriptions(self) -> list[str]:
        """Non-empty transcriptions, oldest first."""

        return [t.transcription for t in self._history if t.transcription.strip()]
