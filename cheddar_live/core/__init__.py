from __future__ import annotations

from cheddar_live.core.errors import AuthError, CaptureProcessError, CheddarError, LiveConnectionError
from cheddar_live.core.types import ErrorKind, Result

__all__ = [
    "AuthError",
    "CaptureProcessError",
    "CheddarError",
    "ErrorKind",
    "LiveConnectionError",
    "Result",
]
