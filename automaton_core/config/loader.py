"""
CONFIG_LOADER
=============

Configuration management for the automaton.

Handles:
- The automaton config file (``automaton.json``)
- Environment overrides for deployment-specific values
- Defaults for everything the file leaves out

Environment overrides (applied after the file is read):

=======================  ==============================
Variable                 Overrides
=======================  ==============================
``AUTOMATON_CONFIG``     config file location
``AUTOMATON_DB_PATH``    ``db_path``
``AUTOMATON_LOG_LEVEL``  ``log_level``
``OLLAMA_HOST``          ``inference.host``
``OLLAMA_MODEL``         ``inference.model``
=======================  ==============================

Usage:
    from automaton_core.config import load_config

    config = load_config()                 # ~/.automaton/automaton.json
    config = load_config("./automaton.json")
    print(config.inference.model, config.unmetered)
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..context import Skill
from ..survival import SurvivalThresholds

DEFAULT_HOME = Path.home() / ".automaton"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "automaton.json"

# Providers that run on the agent's own hardware and are not paid for in credits
UNMETERED_PROVIDERS = ("ollama",)


class ConfigError(ValueError):
    """The config file is unreadable or holds invalid values."""
    pass


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class InferenceConfig:
    """Inference provider settings."""
    provider: str = "ollama"
    host: str = "http://localhost:11434"
    model: str = "qwen2:7b"
    low_compute_model: str = ""
    max_tokens: int = 4096
    timeout_seconds: float = 300.0

    def to_dict(self) -> Dict:
        return {
            "provider": self.provider,
            "host": self.host,
            "model": self.model,
            "low_compute_model": self.low_compute_model,
            "max_tokens": self.max_tokens,
            "timeout_seconds": self.timeout_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "InferenceConfig":
        return cls(
            provider=data.get("provider", "ollama"),
            host=data.get("host", "http://localhost:11434"),
            model=data.get("model", "qwen2:7b"),
            low_compute_model=data.get("low_compute_model", ""),
            max_tokens=int(data.get("max_tokens", 4096)),
            timeout_seconds=float(data.get("timeout_seconds", 300.0)),
        )


@dataclass
class HeartbeatSettings:
    """Where the heartbeat schedule lives and how often it ticks."""
    config_path: str = ""
    tick_interval_seconds: float = 60.0

    def to_dict(self) -> Dict:
        return {
            "config_path": self.config_path,
            "tick_interval_seconds": self.tick_interval_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "HeartbeatSettings":
        return cls(
            config_path=data.get("config_path", ""),
            tick_interval_seconds=float(data.get("tick_interval_seconds", 60.0)),
        )


@dataclass
class AutomatonConfig:
    """Top-level automaton configuration."""
    name: str = "automaton"
    genesis_prompt: str = ""
    creator_address: str = ""
    db_path: str = str(DEFAULT_HOME / "state.db")
    log_level: str = "INFO"
    log_file: str = ""
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    survival: SurvivalThresholds = field(default_factory=SurvivalThresholds)
    heartbeat: HeartbeatSettings = field(default_factory=HeartbeatSettings)
    skills: List[Skill] = field(default_factory=list)

    @property
    def unmetered(self) -> bool:
        """True when inference does not spend credits, so tier gating is skipped."""
        return self.inference.provider in UNMETERED_PROVIDERS

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "genesis_prompt": self.genesis_prompt,
            "creator_address": self.creator_address,
            "db_path": self.db_path,
            "log_level": self.log_level,
            "log_file": self.log_file,
            "inference": self.inference.to_dict(),
            "survival": self.survival.to_dict(),
            "heartbeat": self.heartbeat.to_dict(),
            "skills": [
                {
                    "name": s.name,
                    "description": s.description,
                    "instructions": s.instructions,
                    "enabled": s.enabled,
                }
                for s in self.skills
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AutomatonConfig":
        try:
            return cls(
                name=data.get("name", "automaton"),
                genesis_prompt=data.get("genesis_prompt", ""),
                creator_address=data.get("creator_address", ""),
                db_path=data.get("db_path", str(DEFAULT_HOME / "state.db")),
                log_level=data.get("log_level", "INFO"),
                log_file=data.get("log_file", ""),
                inference=InferenceConfig.from_dict(data.get("inference", {})),
                survival=SurvivalThresholds.from_dict(data.get("survival", {})),
                heartbeat=HeartbeatSettings.from_dict(data.get("heartbeat", {})),
                skills=[
                    Skill(
                        name=s["name"],
                        description=s.get("description", ""),
                        instructions=s.get("instructions", ""),
                        enabled=s.get("enabled", True),
                    )
                    for s in data.get("skills", [])
                ],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid automaton config: {e}") from e


# ============================================================================
# LOADING
# ============================================================================

def apply_env_overrides(config: AutomatonConfig, environ: Optional[Dict[str, str]] = None) -> AutomatonConfig:
    """Apply environment overrides in place and return ``config``."""
    env = os.environ if environ is None else environ

    if env.get("AUTOMATON_DB_PATH"):
        config.db_path = env["AUTOMATON_DB_PATH"]
    if env.get("AUTOMATON_LOG_LEVEL"):
        config.log_level = env["AUTOMATON_LOG_LEVEL"].upper()
    if env.get("OLLAMA_HOST"):
        config.inference.host = env["OLLAMA_HOST"]
    if env.get("OLLAMA_MODEL"):
        config.inference.model = env["OLLAMA_MODEL"]
    return config


def resolve_config_path(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    if path:
        return Path(path).expanduser()
    if env.get("AUTOMATON_CONFIG"):
        return Path(env["AUTOMATON_CONFIG"]).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> AutomatonConfig:
    """
    Load the automaton config.

    A missing file yields defaults. An unreadable or malformed file raises
    ``ConfigError``. Environment overrides are applied last.
    """
    config_path = resolve_config_path(path, environ)

    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read config {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {config_path} must contain a JSON object")
        config = AutomatonConfig.from_dict(data)
    else:
        config = AutomatonConfig()

    return apply_env_overrides(config, environ)


def save_config(config: AutomatonConfig, path: Optional[str] = None) -> Path:
    config_path = resolve_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
    return config_path
