from __future__ import annotations

import asyncio
import base64

from fakes import FakeOpener, FakeSpawner, no_orphans

from cheddar_live.config.model import LiveSettings
from cheddar_live.core.events import STATUS
from cheddar_live.core.types import ErrorKind
from cheddar_live.service import LiveAssistantService
from cheddar_live.session.settings import MemorySettingsStore
from cheddar_live.session.state import SessionState


def _service(*, platform: str = "darwin") -> tuple[LiveAssistantService, FakeOpener, FakeSpawner]:
    opener = FakeOpener()
    spawner = FakeSpawner()
    svc = LiveAssistantService(
        LiveSettings.from_mapping({"gemini": {"model": "svc-model"}}),
        opener=opener,
        settings_store=MemorySettingsStore(),
        spawner=spawner,
        orphan_killer=no_orphans,
        platform=platform,
    )
    return svc, opener, spawner


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def test_initialize_uses_configured_defaults() -> None:
    async def scenario():
        svc, opener, _ = _service()
        ok = await svc.initialize("key")
        return svc, opener, ok

    svc, opener, ok = asyncio.run(scenario())

    assert ok
    assert opener.models == ["svc-model"]
    ctx = svc.controller.context
    assert ctx is not None
    assert (ctx.profile, ctx.language) == ("interview", "en-US")


def test_send_operations_reject_invalid_base64() -> None:
    async def scenario():
        svc, opener, _ = _service()
        await svc.initialize("key")
        opener.latest.open()
        await svc.controller.settle()
        return (
            await svc.send_audio("not base64!!"),
            await svc.send_image(""),
            await svc.send_audio(_b64(b"\x00\x01" * 10)),
            await svc.send_image(_b64(b"\xff" * 1500), debug=True),
            opener,
        )

    bad_audio, bad_image, audio, image, opener = asyncio.run(scenario())

    assert bad_audio.error == "Invalid audio data"
    assert bad_audio.kind is ErrorKind.INPUT_REJECTED
    assert bad_image.error == "Invalid image data"
    assert audio.ok and image.ok
    assert [sorted(p) for p in opener.latest.sent] == [["audio"], ["media"]]


def test_send_before_initialize_is_not_connected() -> None:
    async def scenario():
        svc, _, _ = _service()
        return await svc.send_text("hello")

    r = asyncio.run(scenario())

    assert not r.ok
    assert r.to_dict() == {"success": False, "error": "No active live session"}


def test_captured_frames_are_forwarded_as_audio() -> None:
    async def scenario():
        svc, opener, spawner = _service()
        await svc.initialize("key")
        opener.latest.open()
        await svc.controller.settle()

        started = await svc.start_audio_capture()
        proc = spawner.processes[0]
        proc.stdout.feed_data(b"\x10\x00\x20\x00" * 2400)
        proc.stdout.feed_eof()
        await svc.capture.drain()

        closed = await svc.close()
        return svc, opener, started, closed

    svc, opener, started, closed = asyncio.run(scenario())

    assert started.ok
    assert closed.ok
    audio = [p["audio"] for p in opener.latest.sent if "audio" in p]
    assert len(audio) == 1
    assert audio[0]["mimeType"] == "audio/pcm;rate=24000"
    # Left channel only: every sample is 0x0010.
    assert base64.b64decode(audio[0]["data"]) == b"\x10\x00" * 2400
    assert not svc.capture.running
    assert svc.controller.state is SessionState.CLOSED


def test_capture_unsupported_platform_is_reported() -> None:
    async def scenario():
        svc, _, spawner = _service(platform="win32")
        return await svc.start_audio_capture(), spawner

    r, spawner = asyncio.run(scenario())

    assert not r.ok
    assert r.kind is ErrorKind.INTERNAL
    assert spawner.calls == []


def test_session_history_operations() -> None:
    async def scenario():
        svc, opener, _ = _service()
        await svc.initialize("key")
        t = opener.latest
        t.open()
        t.message(transcription="q1", response_text="a1", generation_complete=True)
        await svc.controller.settle()
        before = svc.get_current_session()
        new = svc.start_new_session()
        after = svc.get_current_session()
        return before, new, after

    before, new, after = asyncio.run(scenario())

    assert before.data["history"][0]["transcription"] == "q1"
    assert new.data["sessionId"] == after.data["sessionId"]
    assert new.data["sessionId"] != before.data["sessionId"]
    assert after.data["history"] == []


def test_close_without_session_or_capture_succeeds() -> None:
    async def scenario():
        svc, _, _ = _service()
        statuses: list[str] = []
        svc.bus.subscribe(STATUS, statuses.append)
        r = await svc.close()
        await svc.shutdown()
        return r, statuses

    r, statuses = asyncio.run(scenario())

    assert r.ok
    assert statuses == []


def test_update_search_setting_is_acknowledged() -> None:
    svc, _, _ = _service()
    assert svc.update_search_setting(False).ok
