from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Mapping

from cheddar_live.session.settings import SettingsStore


logger = logging.getLogger(__name__)

SEARCH_SETTING_KEY = "googleSearchEnabled"
SEARCH_TOOL: Mapping[str, Any] = {"googleSearch": {}}


@dataclass(frozen=True, slots=True)
class ToolConfig:
    tools: tuple[Mapping[str, Any], ...] = ()

    @property
    def search_enabled(self) -> bool:
        return any("googleSearch" in t for t in self.tools)


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        # The settings UI stores the literal string "true"; anything else disables.
        return value.strip().lower() == "true"
    return bool(value)


class ToolConfigResolver:
    """Decides which optional model capabilities a new connection gets.

    Fail-open: if the settings store cannot be read (not ready yet, broken),
    search stays enabled.
    """

    def __init__(
        self,
        settings: SettingsStore | None,
        *,
        settle_delay_s: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._settle_delay_s = settle_delay_s
        self._sleep = sleep

    async def _read_search_preference(self) -> bool:
        if self._settings is None:
            raise LookupError("no settings store attached")
        return _truthy(await self._settings.get(SEARCH_SETTING_KEY, True))

    async def resolve(self) -> ToolConfig:
        try:
            enabled = await self._read_search_preference()
        except Exception as first:  # noqa: BLE001
            logger.info("settings_not_ready", extra={"key": SEARCH_SETTING_KEY, "error": str(first)})
            # Give the settings owner a moment to come up, then try once more.
            await self._sleep(self._settle_delay_s)
            try:
                enabled = await self._read_search_preference()
            except Exception as e:  # noqa: BLE001
                logger.warning("settings_unavailable_default_enabled", extra={"key": SEARCH_SETTING_KEY, "error": str(e)})
                enabled = True

        logger.info("tool_config_resolved", extra={"search_enabled": enabled})
        return ToolConfig(tools=(dict(SEARCH_TOOL),) if enabled else ())
