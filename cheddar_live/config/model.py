from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from cheddar_live.config.errors import ConfigError


DEFAULT_MODEL = "gemini-live-2.5-flash-preview"
DEFAULT_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)


def _get(d: Mapping[str, Any], path: str, default: Any) -> Any:
    cur: Any = d
    for part in path.split("."):
        if not isinstance(cur, Mapping) or part not in cur:
            return default
        cur = cur[part]
    return cur


def _as_int(value: Any, *, path: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Expected an integer, got {value!r}", path=path) from e


def _as_float(value: Any, *, path: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Expected a number, got {value!r}", path=path) from e


@dataclass(frozen=True, slots=True)
class SessionSettings:
    max_reconnect_attempts: int = 3
    reconnect_delay_s: float = 2.0
    min_image_bytes: int = 1000
    default_profile: str = "interview"
    default_language: str = "en-US"


@dataclass(frozen=True, slots=True)
class AudioCaptureSettings:
    """Native capture subprocess contract: s16le interleaved PCM on stdout."""

    binary: str = "SystemAudioDump"
    sample_rate: int = 24000
    channels: int = 2
    bytes_per_sample: int = 2
    frame_ms: int = 100
    platforms: tuple[str, ...] = ("darwin",)
    debug_dir: Path | None = None

    @property
    def frame_duration_s(self) -> float:
        return self.frame_ms / 1000


@dataclass(frozen=True, slots=True)
class LiveSettings:
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    url: str = DEFAULT_URL
    session: SessionSettings = field(default_factory=SessionSettings)
    capture: AudioCaptureSettings = field(default_factory=AudioCaptureSettings)
    settings_path: Path | None = None

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "LiveSettings":
        api_key = _get(cfg, "gemini.api_key", None)
        if api_key is not None and not isinstance(api_key, str):
            raise ConfigError("Expected a string", path="gemini.api_key")

        session = SessionSettings(
            max_reconnect_attempts=_as_int(
                _get(cfg, "session.max_reconnect_attempts", 3), path="session.max_reconnect_attempts"
            ),
            reconnect_delay_s=_as_float(
                _get(cfg, "session.reconnect_delay_s", 2.0), path="session.reconnect_delay_s"
            ),
            min_image_bytes=_as_int(_get(cfg, "session.min_image_bytes", 1000), path="session.min_image_bytes"),
            default_profile=str(_get(cfg, "session.default_profile", "interview")),
            default_language=str(_get(cfg, "session.default_language", "en-US")),
        )
        if session.max_reconnect_attempts < 0:
            raise ConfigError("Must be >= 0", path="session.max_reconnect_attempts")

        platforms = _get(cfg, "audio.capture.platforms", ["darwin"])
        if isinstance(platforms, str):
            platforms = [platforms]

        debug_dir = _get(cfg, "audio.debug_dir", None)
        capture = AudioCaptureSettings(
            binary=str(_get(cfg, "audio.capture.binary", "SystemAudioDump")),
            sample_rate=_as_int(_get(cfg, "audio.capture.sample_rate", 24000), path="audio.capture.sample_rate"),
            channels=_as_int(_get(cfg, "audio.capture.channels", 2), path="audio.capture.channels"),
            frame_ms=_as_int(_get(cfg, "audio.capture.frame_ms", 100), path="audio.capture.frame_ms"),
            platforms=tuple(str(p) for p in platforms),
            debug_dir=Path(str(debug_dir)).expanduser() if debug_dir else None,
        )
        if capture.channels not in (1, 2):
            raise ConfigError(f"Unsupported channels={capture.channels}; expected 1 or 2", path="audio.capture.channels")

        settings_path = _get(cfg, "settings.path", None)
        return cls(
            api_key=api_key,
            model=str(_get(cfg, "gemini.model", DEFAULT_MODEL)),
            url=str(_get(cfg, "gemini.url", DEFAULT_URL)),
            session=session,
            capture=capture,
            settings_path=Path(str(settings_path)).expanduser() if settings_path else None,
        )
