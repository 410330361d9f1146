"""Read-only access to user preferences owned by another component."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml

from cheddar_live.config.errors import ConfigError


class SettingsStore(Protocol):
    async def get(self, key: str, default: Any) -> Any: ...


class YamlSettingsStore:
    """Preferences persisted as a flat YAML mapping.

    The file is re-read on every lookup so edits made by the UI process are
    picked up by the next connect.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    async def get(self, key: str, default: Any) -> Any:
        if not self._path.exists():
            return default
        try:
            data = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Settings not readable: {e}", path=str(self._path)) from e
        if data is None:
            return default
        if not isinstance(data, Mapping):
            raise ConfigError("Settings file must be a mapping", path=str(self._path))
        return data.get(key, default)


class MemorySettingsStore:
    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self.values: dict[str, Any] = dict(values or {})

    async def get(self, key: str, default: Any) -> Any:
        return self.values.get(key, default)
