"""Composition root and the upward operations consumed by the UI/IPC layer."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

from cheddar_live.config.model import LiveSettings
from cheddar_live.core.events import EventBus
from cheddar_live.core.types import ErrorKind, Result
from cheddar_live.io.capture import AudioCaptureBridge, OrphanKiller, Spawner, kill_orphans, spawn_piped
from cheddar_live.llm.gemini_live import GeminiLiveOpener
from cheddar_live.llm.transport import TransportOpener
from cheddar_live.session.controller import AUDIO_MIME, SessionController
from cheddar_live.session.recorder import ConversationRecorder
from cheddar_live.session.settings import SettingsStore, YamlSettingsStore
from cheddar_live.session.tools import ToolConfigResolver


logger = logging.getLogger(__name__)


def _decode_b64(data: Any) -> bytes | None:
    if not isinstance(data, str) or not data:
        return None
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return None


class LiveAssistantService:
    """Wires the controller, recorder, tool resolver and capture bridge together.

    Every collaborator with real I/O (transport opener, subprocess spawner,
    settings store) can be swapped, which is how the tests run without a
    network or an audio device.
    """

    def __init__(
        self,
        settings: LiveSettings,
        *,
        bus: EventBus | None = None,
        opener: TransportOpener | None = None,
        settings_store: SettingsStore | None = None,
        spawner: Spawner = spawn_piped,
        orphan_killer: OrphanKiller = kill_orphans,
        platform: str | None = None,
    ) -> None:
        self.settings = settings
        self.bus = bus or EventBus()

        if settings_store is None and settings.settings_path is not None:
            settings_store = YamlSettingsStore(settings.settings_path)

        self.recorder = ConversationRecorder(self.bus)
        self.controller = SessionController(
            opener=opener or GeminiLiveOpener(url=settings.url),
            recorder=self.recorder,
            tools=ToolConfigResolver(settings_store),
            bus=self.bus,
            model=settings.model,
            settings=settings.session,
        )
        self.capture = AudioCaptureBridge(
            settings.capture,
            self._forward_captured_frame,
            spawner=spawner,
            orphan_killer=orphan_killer,
            platform=platform,
        )

    async def _forward_captured_frame(self, frame: bytes) -> None:
        result = await self.controller.send_audio(frame, mime_type=AUDIO_MIME)
        if not result.ok and result.kind is not ErrorKind.NOT_CONNECTED:
            logger.debug("captured_frame_not_sent", extra={"error": result.error})

    async def initialize(
        self,
        credentials: str,
        prompt: str = "",
        profile: str | None = None,
        language: str | None = None,
    ) -> bool:
        return await self.controller.connect(
            credentials,
            prompt,
            profile or self.settings.session.default_profile,
            language or self.settings.session.default_language,
        )

    async def send_audio(self, data_b64: str, mime_type: str = AUDIO_MIME, source: str | None = None) -> Result:
        pcm = _decode_b64(data_b64)
        if pcm is None:
            return Result.rejected("Invalid audio data")
        result = await self.controller.send_audio(pcm, mime_type=mime_type)
        if not result.ok and result.kind is ErrorKind.TRANSPORT:
            logger.warning("audio_send_failed", extra={"source": source, "error": result.error})
        return result

    async def send_image(self, data_b64: str, debug: bool = False) -> Result:
        jpeg = _decode_b64(data_b64)
        if jpeg is None:
            return Result.rejected("Invalid image data")
        if debug:
            logger.info("image_received", extra={"bytes": len(jpeg)})
        return await self.controller.send_image(jpeg)

    async def send_text(self, text: str) -> Result:
        return await self.controller.send_text(text)

    async def start_audio_capture(self) -> Result:
        if not self.capture.supported:
            return Result.failure("System audio capture is not available on this platform", kind=ErrorKind.INTERNAL)
        ok = await self.capture.start()
        return Result(ok=ok, error=None if ok else "Failed to start system audio capture", kind=None if ok else ErrorKind.INTERNAL)

    async def stop_audio_capture(self) -> Result:
        try:
            await self.capture.stop()
        except Exception as e:  # noqa: BLE001
            logger.warning("capture_stop_failed", extra={"error": str(e)})
            return Result.failure(str(e), kind=ErrorKind.INTERNAL)
        return Result.success()

    async def close(self) -> Result:
        # Both releases are attempted even if the first one fails.
        capture_result = await self.stop_audio_capture()
        session_result = await self.controller.close()
        if not session_result.ok:
            return session_result
        return capture_result

    async def shutdown(self) -> None:
        await self.stop_audio_capture()
        await self.controller.shutdown()

    def get_current_session(self) -> Result:
        return Result.success(self.recorder.snapshot().to_dict())

    def start_new_session(self) -> Result:
        return Result.success({"sessionId": self.recorder.reset()})

    def update_search_setting(self, enabled: bool) -> Result:
        # The preference is owned by the settings store; it applies on the next connect.
        logger.info("search_setting_updated", extra={"enabled": bool(enabled)})
        return Result.success()
