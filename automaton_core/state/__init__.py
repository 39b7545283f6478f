"""
Durable state for the automaton: records, the SQLite store and the
role-checked coordination keys.
"""

from .records import (
    AgentState,
    AgentTurn,
    HeartbeatEntry,
    InboxMessage,
    InputSource,
    TokenUsage,
    ToolCallResult,
    Transaction,
    TurnInput,
    new_ulid,
    parse_iso,
    to_iso,
    utc_now,
    utc_now_iso,
)
from .store import StateStore
from .keys import (
    AGENT_STATE,
    SLEEP_UNTIL,
    START_TIME,
    WAKE_REQUEST,
    CoordinationKeys,
    KeyOwnershipError,
    Role,
)

__all__ = [
    "AgentState",
    "AgentTurn",
    "HeartbeatEntry",
    "InboxMessage",
    "InputSource",
    "TokenUsage",
    "ToolCallResult",
    "Transaction",
    "TurnInput",
    "new_ulid",
    "parse_iso",
    "to_iso",
    "utc_now",
    "utc_now_iso",
    "StateStore",
    "AGENT_STATE",
    "SLEEP_UNTIL",
    "START_TIME",
    "WAKE_REQUEST",
    "CoordinationKeys",
    "KeyOwnershipError",
    "Role",
]
