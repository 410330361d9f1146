from __future__ import annotations

import time


def wall_ms() -> int:
    """Wall clock time in milliseconds."""

    return int(time.time() * 1000)
