"""Configuration loading and schema.

- YAML-first configuration under configs/*.yaml
- Strict ${ENV_VAR} expansion (missing/empty env vars are errors)
"""

from __future__ import annotations

from cheddar_live.config.errors import ConfigError
from cheddar_live.config.loader import load_config, resolve_profile_configs
from cheddar_live.config.model import AudioCaptureSettings, LiveSettings, SessionSettings

__all__ = [
    "AudioCaptureSettings",
    "ConfigError",
    "LiveSettings",
    "SessionSettings",
    "load_config",
    "resolve_profile_configs",
]
