from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from fakes import RecordingSleep

from cheddar_live.session.settings import MemorySettingsStore, YamlSettingsStore
from cheddar_live.session.tools import SEARCH_TOOL, ToolConfigResolver


class FlakyStore:
    def __init__(self, failures: int, value: Any = True) -> None:
        self.failures = failures
        self.value = value
        self.reads = 0

    async def get(self, key: str, default: Any) -> Any:
        self.reads += 1
        if self.reads <= self.failures:
            raise RuntimeError("settings window not ready")
        return self.value


def _resolve(store: Any) -> tuple[Any, RecordingSleep]:
    sleep = RecordingSleep()
    resolver = ToolConfigResolver(store, sleep=sleep)
    return asyncio.run(resolver.resolve()), sleep


def test_search_enabled_by_default() -> None:
    cfg, sleep = _resolve(MemorySettingsStore())

    assert cfg.tools == (SEARCH_TOOL,)
    assert cfg.search_enabled
    assert sleep.delays == []


def test_search_disabled_by_setting() -> None:
    cfg, _ = _resolve(MemorySettingsStore({"googleSearchEnabled": False}))

    assert cfg.tools == ()
    assert not cfg.search_enabled


def test_string_setting_values() -> None:
    off, _ = _resolve(MemorySettingsStore({"googleSearchEnabled": "false"}))
    on, _ = _resolve(MemorySettingsStore({"googleSearchEnabled": "true"}))

    assert not off.search_enabled
    assert on.search_enabled


def test_only_literal_true_string_enables_search() -> None:
    for value in ("yes", "1", "on", "", "enabled"):
        cfg, _ = _resolve(MemorySettingsStore({"googleSearchEnabled": value}))
        assert not cfg.search_enabled, value

    cfg, _ = _resolve(MemorySettingsStore({"googleSearchEnabled": " TRUE "}))
    assert cfg.search_enabled


def test_retries_once_after_settle_delay() -> None:
    store = FlakyStore(failures=1, value=False)

    cfg, sleep = _resolve(store)

    assert store.reads == 2
    assert sleep.delays == [0.1]
    assert not cfg.search_enabled


def test_fails_open_when_settings_stay_unreadable() -> None:
    store = FlakyStore(failures=5, value=False)

    cfg, sleep = _resolve(store)

    assert store.reads == 2
    assert sleep.delays == [0.1]
    assert cfg.search_enabled


def test_no_store_means_enabled() -> None:
    cfg, _ = _resolve(None)
    assert cfg.search_enabled


def test_yaml_store_reads_flat_mapping(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("googleSearchEnabled: false\n", encoding="utf-8")

    cfg, _ = _resolve(YamlSettingsStore(path))

    assert not cfg.search_enabled


def test_yaml_store_missing_file_uses_default(tmp_path: Path) -> None:
    cfg, sleep = _resolve(YamlSettingsStore(tmp_path / "absent.yaml"))

    assert cfg.search_enabled
    assert sleep.delays == []


def test_broken_yaml_store_fails_open(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    cfg, sleep = _resolve(YamlSettingsStore(path))

    assert cfg.search_enabled
    assert sleep.delays == [0.1]
