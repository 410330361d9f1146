from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Mapping

from cheddar_live.config.errors import ConfigError
from cheddar_live.config.model import LiveSettings
from cheddar_live.core.events import RESPONSE, STATUS, TURN_SAVED
from cheddar_live.service import LiveAssistantService


logger = logging.getLogger(__name__)


def _print_line(prefix: str, text: str) -> None:
    sys.stdout.write(f"[{prefix}] {text}\n")
    sys.stdout.flush()


async def _handle_command(service: LiveAssistantService, line: str) -> bool:
    """Apply one stdin line. Returns False when the loop should stop."""

    if line in {"/quit", "/exit"}:
        return False

    if line == "/new":
        result = service.start_new_session()
        _print_line("session", str(result.data["sessionId"]))
        return True

    if line.startswith("/image "):
        path = Path(line.removeprefix("/image ").strip()).expanduser()
        try:
            jpeg = path.read_bytes()
        except OSError as e:
            _print_line("error", str(e))
            return True
        result = await service.controller.send_image(jpeg)
    else:
        result = await service.send_text(line)

    if not result.ok:
        _print_line("error", result.error or "unknown error")
    return True


async def run_live_loop(cfg: Mapping[str, Any], *, prompt: str = "", profile: str | None = None) -> None:
    """Connect, stream system audio, and relay stdin lines as text input.

    Commands: `/image <path.jpg>`, `/new`, `/quit`.
    """

    settings = LiveSettings.from_mapping(cfg)
    if not settings.api_key:
        raise ConfigError("Missing gemini.api_key (expected a non-empty string)")

    service = LiveAssistantService(settings)
    service.bus.subscribe(STATUS, lambda text: _print_line("status", text))
    service.bus.subscribe(RESPONSE, lambda text: _print_line("assistant", text))
    service.bus.subscribe(
        TURN_SAVED,
        lambda evt: logger.info(
            "turn_saved",
            extra={"session_id": evt["sessionId"], "turns": len(evt["fullHistory"])},
        ),
    )

    logger.info(
        "live_loop_config",
        extra={
            "model": settings.model,
            "profile": profile or settings.session.default_profile,
            "capture_binary": settings.capture.binary,
            "max_reconnect_attempts": settings.session.max_reconnect_attempts,
        },
    )

    if not await service.initialize(settings.api_key, prompt, profile):
        await service.shutdown()
        raise RuntimeError("Failed to open live session")

    capture = await service.start_audio_capture()
    if not capture.ok:
        logger.warning("capture_unavailable", extra={"error": capture.error})

    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            if not await _handle_command(service, line):
                break
    finally:
        await service.shutdown()
