from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from cheddar_live.config.model import DEFAULT_MODEL, SessionSettings
from cheddar_live.core.errors import AuthError, LiveConnectionError
from cheddar_live.core.events import INITIALIZING, RESPONSE, EventBus
from cheddar_live.core.types import ErrorKind, Result
from cheddar_live.llm.prompts import build_system_prompt
from cheddar_live.llm.transport import (
    LiveConnectConfig,
    ServerFragment,
    TransportCallbacks,
    TransportHandle,
    TransportOpener,
)
from cheddar_live.session.recorder import ConversationRecorder
from cheddar_live.session.state import ReconnectionContext, SessionState
from cheddar_live.session.tools import ToolConfig, ToolConfigResolver


logger = logging.getLogger(__name__)

AUDIO_MIME = "audio/pcm;rate=24000"
IMAGE_MIME = "image/jpeg"

AUTH_FAILURE_PATTERNS = (
    "api key not valid",
    "invalid api key",
    "authentication failed",
    "unauthorized",
)

REPLAY_PREFIX = "Till now all these questions were asked in the conversation, answer the last one please:\n\n"


def is_auth_failure(text: str | None) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(p in lowered for p in AUTH_FAILURE_PATTERNS)


def build_replay_message(transcriptions: Sequence[str]) -> str | None:
    """Context message re-sent after a reconnect; None when there is nothing to replay."""

    items = [t.strip() for t in transcriptions if t and t.strip()]
    if not items:
        return None
    return REPLAY_PREFIX + "\n".join(items)


# Inbound transport events, tagged with the transport epoch that produced them.


@dataclass(frozen=True, slots=True)
class Opened:
    epoch: int


@dataclass(frozen=True, slots=True)
class Message:
    epoch: int
    fragment: ServerFragment


@dataclass(frozen=True, slots=True)
class Errored:
    epoch: int
    message: str


@dataclass(frozen=True, slots=True)
class Closed:
    epoch: int
    reason: str


TransportEvent = Opened | Message | Errored | Closed


class SessionController:
    """Connection lifecycle state machine for one live session.

    All mutable state is owned by the asyncio loop the controller runs on.
    Transport callbacks only enqueue tagged events; a single consumer task
    applies them in order. Events from a transport that has since been
    replaced or released are dropped.
    """

    def __init__(
        self,
        *,
        opener: TransportOpener,
        recorder: ConversationRecorder,
        tools: ToolConfigResolver,
        bus: EventBus,
        model: str = DEFAULT_MODEL,
        settings: SessionSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        cfg = settings or SessionSettings()
        self._opener = opener
        self._recorder = recorder
        self._tools = tools
        self._bus = bus
        self._model = model
        self._sleep = sleep

        self._max_attempts = cfg.max_reconnect_attempts
        self._delay_s = cfg.reconnect_delay_s
        self._min_image_bytes = cfg.min_image_bytes

        self._state = SessionState.IDLE
        self._context: ReconnectionContext | None = None
        self._attempts = 0
        self._transport: TransportHandle | None = None
        self._epoch = 0
        self._tool_config: ToolConfig | None = None

        self._pending_transcription = ""
        self._pending_response = ""

        self._events: asyncio.Queue[TransportEvent] | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    # -- read-only views -------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def context(self) -> ReconnectionContext | None:
        return self._context

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def tool_config(self) -> ToolConfig | None:
        return self._tool_config

    @property
    def pending_transcription(self) -> str:
        return self._pending_transcription

    @property
    def pending_response(self) -> str:
        return self._pending_response

    # -- upward operations -----------------------------------------------

    async def connect(
        self,
        credentials: str,
        prompt: str = "",
        profile: str = "interview",
        language: str = "en-US",
    ) -> bool:
        if self._state is SessionState.CONNECTING:
            logger.info("connect_rejected", extra={"reason": "already_connecting"})
            return False

        self._ensure_event_loop()
        self._set_state(SessionState.CONNECTING)
        self._cancel_reconnect()
        try:
            await self._release_transport()
        except Exception as e:  # noqa: BLE001
            logger.warning("transport_release_failed", extra={"error": str(e)})

        ctx = ReconnectionContext(credentials=credentials, prompt=prompt, profile=profile, language=language)
        self._context = ctx
        self._attempts = 0
        self._reset_buffers()
        self._recorder.reset()

        self._bus.emit(INITIALIZING, True)
        self._bus.status("Connecting...")

        try:
            await self._open_transport(ctx)
        except AuthError as e:
            logger.warning("connect_auth_failed", extra={"error": str(e)})
            self._fail_permanently()
            self._bus.status("Error: Invalid API key")
            return False
        except Exception as e:  # noqa: BLE001
            logger.warning("connect_failed", extra={"error": str(e)})
            if self._context is not ctx:
                return False
            self._context = None
            self._set_state(SessionState.FAILED)
            self._bus.status(f"Error: {e}")
            return False
        finally:
            self._bus.emit(INITIALIZING, False)

        return True

    async def send_audio(self, frame: bytes, *, mime_type: str = AUDIO_MIME) -> Result:
        if not self._is_connected():
            return Result.not_connected()
        if not frame:
            return Result.rejected("Empty audio frame")
        data = base64.b64encode(frame).decode("ascii")
        return await self._send(audio={"data": data, "mimeType": mime_type})

    async def send_image(self, jpeg: bytes) -> Result:
        if not self._is_connected():
            return Result.not_connected()
        if len(jpeg) < self._min_image_bytes:
            logger.warning("image_rejected", extra={"bytes": len(jpeg), "min_bytes": self._min_image_bytes})
            return Result.rejected("Image buffer too small")
        data = base64.b64encode(jpeg).decode("ascii")
        return await self._send(media={"data": data, "mimeType": IMAGE_MIME})

    async def send_text(self, text: str) -> Result:
        if not self._is_connected():
            return Result.not_connected()
        if not isinstance(text, str) or not text.strip():
            return Result.rejected("Invalid text message")
        logger.info("text_sent", extra={"chars": len(text.strip())})
        return await self._send(text=text.strip())

    async def close(self) -> Result:
        self._context = None
        self._cancel_reconnect()
        self._reset_buffers()

        result = Result.success()
        try:
            await self._release_transport()
        except Exception as e:  # noqa: BLE001
            logger.warning("transport_release_failed", extra={"error": str(e)})
            result = Result.failure(str(e), kind=ErrorKind.TRANSPORT)

        if self._state is not SessionState.CLOSED:
            self._set_state(SessionState.CLOSED)
        return result

    async def shutdown(self) -> None:
        await self.close()
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

    async def settle(self) -> None:
        """Wait until queued transport events and any reconnection in flight are handled."""

        while True:
            if self._events is not None:
                await self._events.join()
            task = self._reconnect_task
            if task is not None and not task.done():
                await asyncio.wait({task})
                continue
            if self._events is None or self._events.empty():
                return

    # -- transport plumbing ----------------------------------------------

    def _is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED and self._transport is not None

    async def _send(self, **payload: Any) -> Result:
        transport = self._transport
        if transport is None:
            return Result.not_connected()
        try:
            await transport.send_realtime_input(**payload)
        except Exception as e:  # noqa: BLE001
            logger.warning("realtime_input_failed", extra={"kind": next(iter(payload)), "error": str(e)})
            return Result.failure(str(e), kind=ErrorKind.TRANSPORT)
        return Result.success()

    def _callbacks(self, epoch: int) -> TransportCallbacks:
        def enqueue(event: TransportEvent) -> None:
            assert self._events is not None
            self._events.put_nowait(event)

        return TransportCallbacks(
            on_open=lambda: enqueue(Opened(epoch)),
            on_message=lambda fragment: enqueue(Message(epoch, fragment)),
            on_error=lambda message: enqueue(Errored(epoch, str(message))),
            on_close=lambda reason: enqueue(Closed(epoch, str(reason or ""))),
        )

    async def _open_transport(self, ctx: ReconnectionContext) -> TransportHandle:
        tool_config = await self._tools.resolve()
        self._tool_config = tool_config

        config = LiveConnectConfig(
            tools=tool_config.tools,
            speech_language=ctx.language,
            system_instruction=build_system_prompt(
                ctx.profile, ctx.prompt, search_enabled=tool_config.search_enabled
            ),
        )

        self._epoch += 1
        epoch = self._epoch
        handle = await self._opener(
            credentials=ctx.credentials,
            model=self._model,
            config=config,
            callbacks=self._callbacks(epoch),
        )

        if epoch != self._epoch or self._context is not ctx:
            # close() or a newer connect() ran while the opener was pending.
            try:
                await handle.close()
            except Exception as e:  # noqa: BLE001
                logger.warning("transport_release_failed", extra={"error": str(e)})
            raise LiveConnectionError("connection superseded while opening")

        self._transport = handle
        logger.info("transport_opened", extra={"epoch": epoch, "model": self._model})
        return handle

    async def _release_transport(self) -> None:
        handle = self._transport
        self._transport = None
        # Anything the old transport still reports is stale from here on.
        self._epoch += 1
        if handle is not None:
            await handle.close()

    def _ensure_event_loop(self) -> None:
        if self._events is None:
            self._events = asyncio.Queue()
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run_events(), name="session_events")

    async def _run_events(self) -> None:
        assert self._events is not None
        while True:
            event = await self._events.get()
            try:
                if event.epoch != self._epoch:
                    logger.debug("stale_transport_event", extra={"event": type(event).__name__})
                    continue
                await self._dispatch(event)
            except Exception as e:  # noqa: BLE001
                logger.exception("transport_event_failed", extra={"event": type(event).__name__})
                self._bus.status(f"Error: {e}")
            finally:
                self._events.task_done()

    async def _dispatch(self, event: TransportEvent) -> None:
        if isinstance(event, Opened):
            await self._on_opened()
        elif isinstance(event, Message):
            self._on_message(event.fragment)
        elif isinstance(event, Errored):
            self._on_error(event.message)
        elif isinstance(event, Closed):
            self._on_closed(event.reason)

    # -- event handlers --------------------------------------------------

    async def _on_opened(self) -> None:
        if self._state in (SessionState.FAILED, SessionState.CLOSED):
            logger.info("open_ignored", extra={"state": self._state.value})
            return

        was_reconnecting = self._state is SessionState.RECONNECTING
        self._set_state(SessionState.CONNECTED)

        if was_reconnecting:
            self._attempts = 0
            logger.info("reconnected", extra={"session_id": self._recorder.session_id})
            await self._replay_context()

        self._bus.status("Live session connected")

    def _on_message(self, fragment: ServerFragment) -> None:
        if fragment.transcription:
            self._pending_transcription += fragment.transcription
        if fragment.response_text:
            self._pending_response += fragment.response_text

        if fragment.generation_complete:
            self._flush_turn()

        if fragment.turn_complete:
            self._bus.status("Listening...")

    def _flush_turn(self) -> None:
        transcription = self._pending_transcription
        response = self._pending_response
        self._reset_buffers()

        if response:
            self._bus.emit(RESPONSE, response)
        if transcription and response:
            self._recorder.append_turn(transcription, response)

    def _on_error(self, message: str) -> None:
        logger.warning("live_error", extra={"error": message})
        if is_auth_failure(message):
            self._fail_permanently()
            self._bus.status("Error: Invalid API key")
            return
        self._bus.status(f"Error: {message}")

    def _on_closed(self, reason: str) -> None:
        logger.info("live_closed", extra={"reason": reason, "state": self._state.value})
        self._transport = None

        if is_auth_failure(reason):
            self._fail_permanently()
            self._bus.status("Session closed: Invalid API key")
            return

        if self._context is not None and self._attempts < self._max_attempts:
            self._set_state(SessionState.RECONNECTING)
            self._start_reconnect()
            return

        self._give_up()

    # -- reconnection ----------------------------------------------------

    def _start_reconnect(self) -> None:
        previous = self._reconnect_task
        self._reconnect_task = asyncio.create_task(self._reconnect(after=previous), name="session_reconnect")

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect(self, *, after: asyncio.Task[None] | None = None) -> None:
        if after is not None and not after.done():
            await asyncio.wait({after})

        while True:
            ctx = self._context
            if ctx is None or self._state is not SessionState.RECONNECTING:
                logger.info("reconnect_aborted", extra={"state": self._state.value})
                return

            self._attempts += 1
            attempt = self._attempts
            logger.info("reconnect_attempt", extra={"attempt": attempt, "max_attempts": self._max_attempts})
            self._bus.status(f"Reconnecting ({attempt}/{self._max_attempts})...")

            await self._sleep(self._delay_s)

            # close() may have run while we were waiting.
            if self._context is not ctx or self._state is not SessionState.RECONNECTING:
                logger.info("reconnect_aborted", extra={"state": self._state.value})
                return

            try:
                await self._open_transport(ctx)
            except AuthError as e:
                logger.warning("reconnect_auth_failed", extra={"error": str(e)})
                self._fail_permanently()
                self._bus.status("Session closed: Invalid API key")
                return
            except Exception as e:  # noqa: BLE001
                logger.warning("reconnect_attempt_failed", extra={"attempt": attempt, "error": str(e)})
                if self._context is not ctx:
                    return
                if self._attempts < self._max_attempts:
                    continue
                self._give_up()
                return

            # The session is CONNECTED once the new transport reports open.
            return

    async def _replay_context(self) -> None:
        message = build_replay_message(self._recorder.transcriptions())
        if message is None or self._transport is None:
            return
        try:
            await self._transport.send_realtime_input(text=message)
        except Exception as e:  # noqa: BLE001
            logger.warning("context_replay_failed", extra={"error": str(e)})
            return
        logger.info("context_replayed", extra={"turns": len(self._recorder.transcriptions())})

    # -- state helpers ---------------------------------------------------

    def _fail_permanently(self) -> None:
        self._context = None
        self._attempts = self._max_attempts
        self._cancel_reconnect()
        self._set_state(SessionState.FAILED)

    def _give_up(self) -> None:
        if self._context is not None or self._state is SessionState.FAILED:
            self._set_state(SessionState.FAILED)
        else:
            self._set_state(SessionState.CLOSED)
        self._context = None
        logger.info("session_closed", extra={"attempts": self._attempts})
        self._bus.status("Session closed")

    def _reset_buffers(self) -> None:
        self._pending_transcription = ""
        self._pending_response = ""

    def _set_state(self, new: SessionState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        logger.info("session_state", extra={"from": old.value, "to": new.value})
