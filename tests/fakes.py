"""In-memory stand-ins for the transport, the settings store and the capture subprocess."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping

from cheddar_live.config.model import SessionSettings
from cheddar_live.core.events import RESPONSE, STATUS, TURN_SAVED, EventBus
from cheddar_live.llm.transport import LiveConnectConfig, ServerFragment, TransportCallbacks
from cheddar_live.session.controller import SessionController
from cheddar_live.session.recorder import ConversationRecorder
from cheddar_live.session.settings import MemorySettingsStore
from cheddar_live.session.tools import ToolConfigResolver


class FakeTransport:
    def __init__(self, *, callbacks: TransportCallbacks, config: LiveConnectConfig, credentials: str) -> None:
        self.callbacks = callbacks
        self.config = config
        self.credentials = credentials
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail_sends = False

    async def send_realtime_input(
        self,
        *,
        audio: Mapping[str, str] | None = None,
        media: Mapping[str, str] | None = None,
        text: str | None = None,
    ) -> None:
        if self.fail_sends:
            raise ConnectionError("socket gone")
        payload = {k: v for k, v in (("audio", audio), ("media", media), ("text", text)) if v is not None}
        self.sent.append(payload)

    async def close(self) -> None:
        self.closed = True

    # Server side.

    def open(self) -> None:
        self.callbacks.on_open()

    def message(self, **kwargs: Any) -> None:
        self.callbacks.on_message(ServerFragment(**kwargs))

    def error(self, message: str) -> None:
        self.callbacks.on_error(message)

    def drop(self, reason: str = "") -> None:
        self.callbacks.on_close(reason)

    def texts(self) -> list[str]:
        return [p["text"] for p in self.sent if "text" in p]


class FakeOpener:
    """Returns a new FakeTransport per call; queued exceptions are raised first."""

    def __init__(self, failures: list[BaseException | None] | None = None) -> None:
        self.failures = list(failures or [])
        self.transports: list[FakeTransport] = []
        self.calls = 0
        self.models: list[str] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def __call__(
        self,
        *,
        credentials: str,
        model: str,
        config: LiveConnectConfig,
        callbacks: TransportCallbacks,
    ) -> FakeTransport:
        self.calls += 1
        self.models.append(model)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            exc = self.failures.pop(0)
            if exc is not None:
                raise exc
        transport = FakeTransport(callbacks=callbacks, config=config, credentials=credentials)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class GatedSleep:
    """Blocks until released, so a test can act while a reconnect is waiting."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.entered.set()
        await self.release.wait()


@dataclass
class Harness:
    controller: SessionController
    opener: FakeOpener
    recorder: ConversationRecorder
    bus: EventBus
    sleep: Any
    statuses: list[str] = field(default_factory=list)
    responses: list[str] = field(default_factory=list)
    saved: list[dict[str, Any]] = field(default_factory=list)


def make_harness(
    *,
    opener: FakeOpener | None = None,
    settings: Mapping[str, Any] | None = None,
    max_attempts: int = 3,
    delay_s: float = 2.0,
    sleep: Any = None,
) -> Harness:
    bus = EventBus()
    recorder = ConversationRecorder(bus)
    opener = opener or FakeOpener()
    sleep = sleep or RecordingSleep()
    controller = SessionController(
        opener=opener,
        recorder=recorder,
        tools=ToolConfigResolver(MemorySettingsStore(settings), sleep=RecordingSleep()),
        bus=bus,
        model="test-model",
        settings=SessionSettings(max_reconnect_attempts=max_attempts, reconnect_delay_s=delay_s),
        sleep=sleep,
    )
    h = Harness(controller=controller, opener=opener, recorder=recorder, bus=bus, sleep=sleep)
    bus.subscribe(STATUS, h.statuses.append)
    bus.subscribe(RESPONSE, h.responses.append)
    bus.subscribe(TURN_SAVED, h.saved.append)
    return h


async def connected_harness(**kwargs: Any) -> Harness:
    h = make_harness(**kwargs)
    assert await h.controller.connect("key-123", "be brief", "interview", "en-US")
    h.opener.latest.open()
    await h.controller.settle()
    return h


class FakeProcess:
    """Enough of asyncio.subprocess.Process for the capture bridge."""

    def __init__(self, pid: int | None = 4242) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.terminated = False
        self._exited = asyncio.Event()

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)

    def exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self.stdout.feed_eof()
            self.stderr.feed_eof()
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


class FakeSpawner:
    def __init__(self, error: BaseException | None = None, pid: int | None = 4242) -> None:
        self.error = error
        self.pid = pid
        self.calls: list[list[str]] = []
        self.processes: list[FakeProcess] = []

    async def __call__(self, argv: Any) -> FakeProcess:
        self.calls.append(list(argv))
        if self.error is not None:
            raise self.error
        proc = FakeProcess(pid=self.pid)
        self.processes.append(proc)
        return proc


async def no_orphans(name: str) -> None:
    return None


async def spin(predicate: Any, *, rounds: int = 50) -> bool:
    for _ in range(rounds):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()
