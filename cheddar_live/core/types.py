from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_CONNECTED = "not_connected"
    INPUT_REJECTED = "input_rejected"
    TRANSPORT = "transport"
    INTERNAL = "internal"


@dataclass(frozen=True, slots=True)
class Result:
    """Outcome of an upward operation.

    Caller errors (not connected, empty text, undersized image) are reported
    here instead of being raised.
    """

    ok: bool
    error: str | None = None
    kind: ErrorKind | None = None
    data: Any = None

    @classmethod
    def success(cls, data: Any = None) -> "Result":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str, *, kind: ErrorKind) -> "Result":
        return cls(ok=False, error=error, kind=kind)

    @classmethod
    def not_connected(cls) -> "Result":
        return cls.failure("No active live session", kind=ErrorKind.NOT_CONNECTED)

    @classmethod
    def rejected(cls, error: str) -> "Result":
        return cls.failure(error, kind=ErrorKind.INPUT_REJECTED)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.ok}
        if self.error is not None:
            out["error"] = self.error
        if self.data is not None:
            out["data"] = self.data
        return out
