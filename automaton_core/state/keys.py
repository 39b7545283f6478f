"""
COORDINATION_KEYS
=================

Typed accessors for the durable coordination keys shared by the agent
loop, the heartbeat scheduler and the runtime host.

The loop and the scheduler never call each other. They communicate only
through these keys, and each key has a fixed set of writer roles:

=================  ===========================  ===========================
Key                Who may set it               Who may clear it
=================  ===========================  ===========================
``agent_state``    agent loop                   (never cleared)
``sleep_until``    agent loop (incl. its tools)  agent loop, runtime host
``wake_request``   heartbeat scheduler          runtime host
``start_time``     agent loop                   (never cleared)
=================  ===========================  ===========================

Every role may read every key. Writing outside the table raises
``KeyOwnershipError`` instead of silently racing another process.

Usage::

    keys = CoordinationKeys(store, Role.HEARTBEAT)
    keys.request_wake("3 unread inbox messages")

    host_keys = CoordinationKeys(store, Role.RUNTIME)
    reason = host_keys.consume_wake_request()   # clears sleep_until too
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .records import AgentState, parse_iso, to_iso, utc_now_iso
from .store import StateStore


AGENT_STATE = "agent_state"
SLEEP_UNTIL = "sleep_until"
WAKE_REQUEST = "wake_request"
START_TIME = "start_time"


class Role(str, Enum):
    AGENT_LOOP = "agent_loop"
    HEARTBEAT = "heartbeat"
    RUNTIME = "runtime"


_SETTERS: Dict[str, FrozenSet[Role]] = {
    AGENT_STATE: frozenset({Role.AGENT_LOOP}),
    SLEEP_UNTIL: frozenset({Role.AGENT_LOOP}),
    WAKE_REQUEST: frozenset({Role.HEARTBEAT}),
    START_TIME: frozenset({Role.AGENT_LOOP}),
}

_CLEARERS: Dict[str, FrozenSet[Role]] = {
    AGENT_STATE: frozenset(),
    SLEEP_UNTIL: frozenset({Role.AGENT_LOOP, Role.RUNTIME}),
    WAKE_REQUEST: frozenset({Role.RUNTIME}),
    START_TIME: frozenset(),
}


class KeyOwnershipError(PermissionError):
    """A role tried to write a coordination key it does not own."""

    def __init__(self, role: Role, key: str, action: str):
        self.role = role
        self.key = key
        self.action = action
        super().__init__(f"role '{role.value}' may not {action} key '{key}'")


class CoordinationKeys:
    """Role-bound view over the coordination keys of a ``StateStore``."""

    def __init__(self, store: StateStore, role: Role):
        self.store = store
        self.role = role

    def _require(self, table: Dict[str, FrozenSet[Role]], key: str, action: str) -> None:
        if self.role not in table[key]:
            raise KeyOwnershipError(self.role, key, action)

    # -- agent_state --------------------------------------------------------

    def get_agent_state(self) -> AgentState:
        return self.store.get_agent_state()

    def set_agent_state(self, state: AgentState) -> None:
        self._require(_SETTERS, AGENT_STATE, "set")
        self.store.set_agent_state(state)

    # -- sleep_until --------------------------------------------------------

    def get_sleep_until(self) -> Optional[datetime]:
        return parse_iso(self.store.get_kv(SLEEP_UNTIL))

    def set_sleep_until(self, when: datetime) -> None:
        self._require(_SETTERS, SLEEP_UNTIL, "set")
        self.store.set_kv(SLEEP_UNTIL, to_iso(when))

    def clear_sleep_until(self) -> None:
        self._require(_CLEARERS, SLEEP_UNTIL, "clear")
        self.store.delete_kv(SLEEP_UNTIL)

    # -- wake_request -------------------------------------------------------

    def get_wake_request(self) -> Optional[str]:
        return self.store.get_kv(WAKE_REQUEST)

    def request_wake(self, reason: str) -> None:
        self._require(_SETTERS, WAKE_REQUEST, "set")
        self.store.set_kv(WAKE_REQUEST, reason)

    def consume_wake_request(self) -> Optional[str]:
        """Take the pending wake request, clearing it and ``sleep_until`` atomically."""
        self._require(_CLEARERS, WAKE_REQUEST, "clear")
        self._require(_CLEARERS, SLEEP_UNTIL, "clear")
        return self.store.consume_kv(WAKE_REQUEST, also_clear=(SLEEP_UNTIL,))

    # -- start_time ---------------------------------------------------------

    def get_start_time(self) -> Optional[datetime]:
        return parse_iso(self.store.get_kv(START_TIME))

    def ensure_start_time(self) -> datetime:
        """Record the start time if none is recorded yet; return the recorded value."""
        existing = self.get_start_time()
        if existing is not None:
            return existing
        self._require(_SETTERS, START_TIME, "set")
        now = utc_now_iso()
        self.store.set_kv(START_TIME, now)
        return parse_iso(now)
