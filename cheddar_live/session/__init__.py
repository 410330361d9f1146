from __future__ import annotations

from cheddar_live.session.controller import SessionController, build_replay_message, is_auth_failure
from cheddar_live.session.recorder import ConversationRecorder
from cheddar_live.session.state import ReconnectionContext, SessionSnapshot, SessionState, Turn
from cheddar_live.session.tools import ToolConfig, ToolConfigResolver

__all__ = [
    "ConversationRecorder",
    "ReconnectionContext",
    "SessionController",
    "SessionSnapshot",
    "SessionState",
    "ToolConfig",
    "ToolConfigResolver",
    "Turn",
    "build_replay_message",
    "is_auth_failure",
]
