"""Live transport adapters (Gemini Live websocket) and prompts."""

from cheddar_live.llm.gemini_live import GeminiLiveOpener, GeminiLiveTransport
from cheddar_live.llm.prompts import build_system_prompt
from cheddar_live.llm.transport import (
	LiveConnectConfig,
	ServerFragment,
	TransportCallbacks,
	TransportHandle,
	TransportOpener,
	parse_server_message,
)

__all__ = [
	"GeminiLiveOpener",
	"GeminiLiveTransport",
	"LiveConnectConfig",
	"ServerFragment",
	"TransportCallbacks",
	"TransportHandle",
	"TransportOpener",
	"build_system_prompt",
	"parse_server_message",
]
