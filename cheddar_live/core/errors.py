from __future__ import annotations


class CheddarError(Exception):
    """Base exception for this project."""


class LiveConnectionError(CheddarError):
    """Transient transport failure. Drives reconnection."""


class AuthError(CheddarError):
    """Credentials were rejected by the backend. Never retried."""


class CaptureProcessError(CheddarError):
    """The native capture binary is missing or could not be spawned."""

    def __init__(self, message: str, *, binary: str | None = None):
        super().__init__(f"{binary}: {message}" if binary else message)
        self.binary = binary
