from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from cheddar_live.config.model import DEFAULT_URL
from cheddar_live.core.errors import AuthError, LiveConnectionError
from cheddar_live.llm.transport import LiveConnectConfig, TransportCallbacks, parse_server_message


logger = logging.getLogger(__name__)


def build_setup_message(*, model: str, config: LiveConnectConfig) -> dict[str, Any]:
    model_name = model if model.startswith("models/") else f"models/{model}"
    setup: dict[str, Any] = {
        "model": model_name,
        "generationConfig": {
            "responseModalities": list(config.response_modalities),
            "speechConfig": {"languageCode": config.speech_language},
        },
        "tools": [dict(t) for t in config.tools],
    }
    if config.system_instruction:
        setup["systemInstruction"] = {"parts": [{"text": config.system_instruction}]}
    if config.transcription_enabled:
        setup["inputAudioTranscription"] = {}
    if config.compression_mode == "sliding_window":
        setup["contextWindowCompression"] = {"slidingWindow": {}}
    return {"setup": setup}


class GeminiLiveTransport:
    """One Gemini Live BidiGenerateContent websocket connection."""

    def __init__(self, ws: Any, *, callbacks: TransportCallbacks) -> None:
        self._ws = ws
        self._callbacks = callbacks
        self._send_lock = asyncio.Lock()
        self._receiver: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._receiver = asyncio.create_task(self._receive(), name="gemini_live_receive")

    async def _send(self, payload: Mapping[str, Any]) -> None:
        # websockets.send() is not safe to call concurrently.
        async with self._send_lock:
            await self._ws.send(json.dumps(payload, ensure_ascii=False))

    async def send_setup(self, *, model: str, config: LiveConnectConfig) -> None:
        await self._send(build_setup_message(model=model, config=config))

    async def send_realtime_input(
        self,
        *,
        audio: Mapping[str, str] | None = None,
        media: Mapping[str, str] | None = None,
        text: str | None = None,
    ) -> None:
        realtime: dict[str, Any] = {}
        if audio is not None:
            realtime["audio"] = dict(audio)
        if media is not None:
            realtime["mediaChunks"] = [dict(media)]
        if text is not None:
            realtime["text"] = text
        if not realtime:
            raise ValueError("send_realtime_input requires audio, media or text")
        await self._send({"realtimeInput": realtime})

    async def close(self) -> None:
        try:
            await self._ws.close(code=1000, reason="client closed")
        finally:
            if self._receiver is not None and not self._receiver.done():
                try:
                    await asyncio.wait_for(asyncio.shield(self._receiver), timeout=2.0)
                except (asyncio.TimeoutError, asyncio.CancelledError):
                    self._receiver.cancel()

    async def _receive(self) -> None:
        cb = self._callbacks
        reason = ""
        try:
            async for msg in self._ws:
                try:
                    data = json.loads(msg)
                except ValueError as e:
                    cb.on_error(f"Malformed server message: {e}")
                    continue

                if not isinstance(data, dict):
                    continue

                if "setupComplete" in data:
                    logger.info("live_setup_complete")
                    cb.on_open()
                    continue

                if "error" in data:
                    err = data.get("error")
                    message = err.get("message") if isinstance(err, Mapping) else str(err)
                    cb.on_error(str(message))
                    continue

                if "goAway" in data:
                    logger.info("live_go_away", extra={"go_away": data.get("goAway")})
                    continue

                if "serverContent" in data:
                    cb.on_message(parse_server_message(data))
                    continue

                logger.debug("live_event", extra={"keys": sorted(data)})
        except ConnectionClosed as e:
            reason = e.rcvd.reason if e.rcvd is not None else str(e)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            logger.exception("live_receive_failed")
            cb.on_error(str(e))
            reason = str(e)
        else:
            reason = getattr(self._ws, "close_reason", None) or ""

        logger.info("live_disconnected", extra={"reason": reason})
        cb.on_close(reason)


@dataclass(frozen=True, slots=True)
class GeminiLiveOpener:
    """Transport opener for the Gemini Live websocket API."""

    url: str = DEFAULT_URL
    ping_interval_s: float = 20.0
    open_timeout_s: float = 10.0

    async def __call__(
        self,
        *,
        credentials: str,
        model: str,
        config: LiveConnectConfig,
        callbacks: TransportCallbacks,
    ) -> GeminiLiveTransport:
        url = f"{self.url}?key={credentials}"
        try:
            ws = await websockets.connect(
                url,
                ping_interval=self.ping_interval_s,
                ping_timeout=self.ping_interval_s,
                open_timeout=self.open_timeout_s,
                max_size=None,
            )
        except InvalidStatus as e:
            status = e.response.status_code
            if status in (401, 403):
                raise AuthError(f"authentication failed (HTTP {status})") from e
            raise LiveConnectionError(f"handshake rejected (HTTP {status})") from e
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise LiveConnectionError(f"connect failed: {e}") from e

        logger.info("live_connected", extra={"url": self.url, "model": model})

        transport = GeminiLiveTransport(ws, callbacks=callbacks)
        try:
            await transport.send_setup(model=model, config=config)
        except (OSError, WebSocketException) as e:
            await ws.close()
            raise LiveConnectionError(f"setup failed: {e}") from e

        transport.start()
        return transport
