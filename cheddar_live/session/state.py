from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Turn:
    timestamp: int
    transcription: str
    response: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    session_id: str
    history: tuple[Turn, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"sessionId": self.session_id, "history": [t.to_dict() for t in self.history]}


@dataclass(frozen=True, slots=True)
class ReconnectionContext:
    """What is needed to transparently re-open a dropped connection.

    The retry budget (attempts, max attempts, delay) lives on the controller
    so it stays observable after the context is cleared.
    """

    credentials: str
    prompt: str
    profile: str
    language: str
