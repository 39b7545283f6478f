"""
STATE_RECORDS
=============

Plain data records shared by the store, the agent loop and the heartbeat
scheduler. These are what the rest of the package passes around; the ORM
rows in ``models.py`` never leave ``store.py``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ulid import monotonic as ulid


# ============================================================================
# ENUMS
# ============================================================================

class AgentState(str, Enum):
    """Lifecycle state of the agent, persisted under the ``agent_state`` key."""
    SETUP = "setup"
    WAKING = "waking"
    RUNNING = "running"
    LOW_COMPUTE = "low_compute"
    CRITICAL = "critical"
    SLEEPING = "sleeping"
    DEAD = "dead"


class InputSource(str, Enum):
    """Where the input that seeded a turn came from."""
    WAKEUP = "wakeup"
    AGENT = "agent"
    SYSTEM = "system"
    USER = "user"


# ============================================================================
# TIME & IDS
# ============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Fixed-width ISO timestamp so stored values sort lexicographically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp, returning None for empty or malformed input."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_ulid() -> str:
    """26-char, time-sortable id; ids from one process are strictly increasing."""
    return str(ulid.new())


# ============================================================================
# TURN RECORDS
# ============================================================================

@dataclass
class TokenUsage:
    """Token usage reported by the inference collaborator."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if not self.total_tokens:
            self.total_tokens = self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "TokenUsage":
        data = data or {}
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", 0)),
            completion_tokens=int(data.get("completion_tokens", 0)),
            total_tokens=int(data.get("total_tokens", 0)),
        )


@dataclass
class ToolCallResult:
    """Outcome of one tool call. ``id`` is the inference call id it answers."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    result: str = ""
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.error

    def to_dict(self) -> Dict:
        d = {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "result": self.result,
            "duration_ms": self.duration_ms,
        }
        if self.error:
            d["error"] = self.error
        return d

    @classmethod
    def from_dict(cls, data: Dict) -> "ToolCallResult":
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=data.get("arguments") or {},
            result=data.get("result") or "",
            duration_ms=int(data.get("duration_ms", 0)),
            error=data.get("error") or None,
        )


@dataclass
class TurnInput:
    """Input fed into a turn: wakeup prompt, inbox digest, corrective note, ..."""
    content: str
    source: InputSource

    def to_dict(self) -> Dict:
        return {"content": self.content, "source": self.source.value}


@dataclass
class AgentTurn:
    """One think -> act -> observe -> persist cycle."""
    id: str
    timestamp: str
    state: AgentState
    input: Optional[TurnInput] = None
    thinking: str = ""
    tool_calls: List[ToolCallResult] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    cost_cents: int = 0

    def tool_names(self) -> List[str]:
        return [tc.name for tc in self.tool_calls]

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "state": self.state.value,
            "input": self.input.to_dict() if self.input else None,
            "thinking": self.thinking,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "token_usage": self.token_usage.to_dict(),
            "cost_cents": self.cost_cents,
        }


# ============================================================================
# INBOX / HEARTBEAT / LEDGER RECORDS
# ============================================================================

@dataclass
class InboxMessage:
    """A message delivered by an external transport for the agent to read."""
    id: str
    sender: str
    content: str
    received_at: str = ""
    reply_to: Optional[str] = None
    processed_at: Optional[str] = None


@dataclass
class HeartbeatEntry:
    """A scheduled heartbeat task. Mutated only by the heartbeat scheduler."""
    name: str
    schedule: str
    task: str
    enabled: bool = True
    last_run: Optional[str] = None
    next_run: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "schedule": self.schedule,
            "task": self.task,
            "enabled": self.enabled,
            "last_run": self.last_run,
            "next_run": self.next_run,
            "params": self.params,
        }


@dataclass
class Transaction:
    """Financial log line (credit checks and similar)."""
    id: str
    type: str
    description: str
    amount_cents: Optional[int] = None
    balance_after_cents: Optional[int] = None
    timestamp: str = ""
