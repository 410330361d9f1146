"""Boundary types between the session controller and a live transport."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol


@dataclass(frozen=True, slots=True)
class LiveConnectConfig:
    response_modalities: tuple[str, ...] = ("TEXT",)
    tools: tuple[Mapping[str, Any], ...] = ()
    transcription_enabled: bool = True
    compression_mode: str | None = "sliding_window"
    speech_language: str = "en-US"
    system_instruction: str = ""


@dataclass(frozen=True, slots=True)
class ServerFragment:
    """One streamed server message, reduced to what the session cares about."""

    transcription: str = ""
    response_text: str = ""
    generation_complete: bool = False
    turn_complete: bool = False
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class TransportCallbacks:
    """Hooks a transport invokes on the controller's event loop.

    `on_open` precedes any `on_message`; `on_close` is the last call a
    transport instance makes.
    """

    on_open: Callable[[], None]
    on_message: Callable[[ServerFragment], None]
    on_error: Callable[[str], None]
    on_close: Callable[[str], None]


class TransportHandle(Protocol):
    async def send_realtime_input(
        self,
        *,
        audio: Mapping[str, str] | None = None,
        media: Mapping[str, str] | None = None,
        text: str | None = None,
    ) -> None: ...

    async def close(self) -> None: ...


class TransportOpener(Protocol):
    def __call__(
        self,
        *,
        credentials: str,
        model: str,
        config: LiveConnectConfig,
        callbacks: TransportCallbacks,
    ) -> Awaitable[TransportHandle]: ...


def parse_server_message(data: Mapping[str, Any]) -> ServerFragment:
    """Extract transcription/response text and completion flags from `serverContent`."""

    content = data.get("serverContent")
    if not isinstance(content, Mapping):
        return ServerFragment(raw=data)

    transcription = ""
    input_tx = content.get("inputTranscription")
    if isinstance(input_tx, Mapping) and isinstance(input_tx.get("text"), str):
        transcription = input_tx["text"]

    response_parts: list[str] = []
    model_turn = content.get("modelTurn")
    if isinstance(model_turn, Mapping):
        for part in model_turn.get("parts") or ():
            if isinstance(part, Mapping) and isinstance(part.get("text"), str):
                response_parts.append(part["text"])

    return ServerFragment(
        transcription=transcription,
        response_text="".join(response_parts),
        generation_complete=bool(content.get("generationComplete")),
        turn_complete=bool(content.get("turnComplete")),
        raw=data,
    )
