"""
AUTOMATON_CORE
==============

Execution core for a self-sustaining autonomous agent.

Features:
- Turn loop with tool calling and repetition detection
- Credit-based survival tiers with low-compute throttling
- Durable SQLite state (turns, tool calls, inbox, heartbeat, KV)
- Heartbeat scheduler that wakes the agent through the store

Usage:
    from automaton_core import AgentLoop, StateStore, FinancialGate
    from automaton_core.inference import OllamaClient
    from automaton_core.tools import ToolRegistry, create_builtin_tools

    store = StateStore("~/.automaton/state.db")
    loop = AgentLoop(store, OllamaClient(), FinancialGate(), registry, identity)
    loop.run()
"""

__version__ = "0.1.0"

# State
from .state import (
    AgentState,
    AgentTurn,
    CoordinationKeys,
    InboxMessage,
    InputSource,
    KeyOwnershipError,
    Role,
    StateStore,
    ToolCallResult,
    TurnInput,
)

# Survival
from .survival import (
    BalanceCache,
    FinancialGate,
    FinancialState,
    SurvivalThresholds,
    SurvivalTier,
    derive_tier,
)

# Core loop
from .loop import AgentLoop, ArgumentParseResult, RepetitionDetector, parse_tool_arguments
from .context import AutomatonIdentity, Skill
from .observability import LoopEvents, estimate_cost_cents

# Configuration
from .config import AutomatonConfig, ConfigError, load_config

# Host
from .runtime import AutomatonRuntime
from .scheduler import HeartbeatScheduler

__all__ = [
    # State
    "AgentState",
    "AgentTurn",
    "CoordinationKeys",
    "InboxMessage",
    "InputSource",
    "KeyOwnershipError",
    "Role",
    "StateStore",
    "ToolCallResult",
    "TurnInput",
    # Survival
    "BalanceCache",
    "FinancialGate",
    "FinancialState",
    "SurvivalThresholds",
    "SurvivalTier",
    "derive_tier",
    # Loop
    "AgentLoop",
    "ArgumentParseResult",
    "RepetitionDetector",
    "parse_tool_arguments",
    "AutomatonIdentity",
    "Skill",
    "LoopEvents",
    "estimate_cost_cents",
    # Config
    "AutomatonConfig",
    "ConfigError",
    "load_config",
    # Host
    "AutomatonRuntime",
    "HeartbeatScheduler",
]
