"""
Configuration management for the automaton.
"""

from .loader import (
    AutomatonConfig,
    ConfigError,
    HeartbeatSettings,
    InferenceConfig,
    apply_env_overrides,
    load_config,
    resolve_config_path,
    save_config,
)

__all__ = [
    "AutomatonConfig",
    "ConfigError",
    "HeartbeatSettings",
    "InferenceConfig",
    "apply_env_overrides",
    "load_config",
    "resolve_config_path",
    "save_config",
]
