"""
Heartbeat scheduling for the automaton.
"""

from .heartbeat import (
    HeartbeatContext,
    HeartbeatScheduleError,
    HeartbeatScheduler,
    HeartbeatTask,
    ParsedSchedule,
    is_due,
    next_run_after,
    parse_schedule,
)
from .tasks import BUILTIN_TASKS, check_credits, check_inbox, heartbeat_ping
from .config import (
    DEFAULT_HEARTBEAT_ENTRIES,
    load_heartbeat_config,
    save_heartbeat_config,
    sync_heartbeat_to_store,
)

__all__ = [
    "HeartbeatContext",
    "HeartbeatScheduleError",
    "HeartbeatScheduler",
    "HeartbeatTask",
    "ParsedSchedule",
    "is_due",
    "next_run_after",
    "parse_schedule",
    "BUILTIN_TASKS",
    "check_credits",
    "check_inbox",
    "heartbeat_ping",
    "DEFAULT_HEARTBEAT_ENTRIES",
    "load_heartbeat_config",
    "save_heartbeat_config",
    "sync_heartbeat_to_store",
]
