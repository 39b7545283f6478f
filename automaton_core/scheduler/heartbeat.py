"""
HEARTBEAT_SCHEDULER
===================

Background ticker that runs small periodic tasks while the agent loop is
busy or asleep.

The scheduler:
- Loads enabled heartbeat entries from the store on every tick
- Runs the ones that are due, one after another, on its own thread
- Records ``last_run`` / ``next_run`` for each entry it ran
- Writes ``wake_request`` when a task returns a reason to wake the agent

It never touches ``agent_state``, ``sleep_until`` or turns. Its store
writes go through ``CoordinationKeys`` bound to ``Role.HEARTBEAT``.

Schedules
---------
- Intervals: ``"every 5m"``, ``"30s"``, ``"2h"``, ``"1d"`` or plain seconds ``"90"``
- Cron: any 5-field expression, e.g. ``"*/10 * * * *"`` (via croniter)

Usage::

    scheduler = HeartbeatScheduler(store, financial_gate=gate, tick_interval=60)
    scheduler.start()
    ...
    scheduler.stop()
"""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from croniter import croniter

from ..state.keys import CoordinationKeys, Role
from ..state.records import HeartbeatEntry, parse_iso, to_iso, utc_now
from ..state.store import StateStore
from ..survival import FinancialGate

logger = logging.getLogger(__name__)


_INTERVAL_RE = re.compile(r"^(?:every\s+)?(\d+)\s*([smhd]?)$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


class HeartbeatScheduleError(ValueError):
    """A heartbeat schedule string could not be parsed."""
    pass


# ============================================================================
# SCHEDULES
# ============================================================================

@dataclass
class ParsedSchedule:
    """Parsed heartbeat schedule."""
    type: str  # "interval" or "cron"
    interval_seconds: Optional[int] = None
    cron_expression: Optional[str] = None


def parse_schedule(schedule: str) -> ParsedSchedule:
    """Parse an interval or cron schedule string."""
    text = (schedule or "").strip()

    match = _INTERVAL_RE.match(text)
    if match:
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
        if seconds <= 0:
            raise HeartbeatScheduleError(f"Interval must be positive: {schedule!r}")
        return ParsedSchedule(type="interval", interval_seconds=seconds)

    if len(text.split()) == 5 and croniter.is_valid(text):
        return ParsedSchedule(type="cron", cron_expression=text)

    raise HeartbeatScheduleError(f"Unrecognized heartbeat schedule: {schedule!r}")


def next_run_after(schedule: str, after: datetime) -> datetime:
    """First time strictly after ``after`` at which ``schedule`` fires."""
    parsed = parse_schedule(schedule)
    if parsed.type == "interval":
        return after + timedelta(seconds=parsed.interval_seconds)
    return croniter(parsed.cron_expression, after).get_next(datetime)


def is_due(entry: HeartbeatEntry, now: datetime) -> bool:
    """
    Whether ``entry`` should run at ``now``.

    Entries that never ran are due immediately. Otherwise the stored
    ``next_run`` decides, falling back to ``last_run`` + schedule.
    """
    if not entry.enabled:
        return False

    next_run = parse_iso(entry.next_run)
    if next_run is None:
        last_run = parse_iso(entry.last_run)
        if last_run is None:
            return True
        next_run = next_run_after(entry.schedule, last_run)
    return next_run <= now


# ============================================================================
# TASK CONTEXT
# ============================================================================

@dataclass
class HeartbeatContext:
    """What a heartbeat task may touch."""
    store: StateStore
    keys: CoordinationKeys
    financial_gate: Optional[FinancialGate] = None


# (ctx, params) -> wake reason or None
HeartbeatTask = Callable[[HeartbeatContext, Dict], Optional[str]]


# ============================================================================
# HEARTBEAT SCHEDULER
# ============================================================================

class HeartbeatScheduler:
    """
    Background scheduler for heartbeat entries.

    ``tick()`` can be called directly (tests, one-shot CLI runs); ``start()``
    runs it every ``tick_interval`` seconds on a daemon thread.
    """

    DEFAULT_TICK_INTERVAL = 60.0  # seconds

    def __init__(
        self,
        store: StateStore,
        tasks: Optional[Dict[str, HeartbeatTask]] = None,
        financial_gate: Optional[FinancialGate] = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
    ):
        """
        Args:
            store: Durable state shared with the agent loop.
            tasks: Task name → callable. Defaults to the built-in tasks.
            financial_gate: Passed to tasks that check balances.
            tick_interval: Seconds between ticks on the background thread.
        """
        if tasks is None:
            from .tasks import BUILTIN_TASKS
            tasks = dict(BUILTIN_TASKS)

        self.store = store
        self.tasks = tasks
        self.tick_interval = tick_interval
        self.keys = CoordinationKeys(store, Role.HEARTBEAT)
        self.context = HeartbeatContext(store=store, keys=self.keys, financial_gate=financial_gate)

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start(self) -> None:
        """Start the scheduler background thread."""
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="heartbeat", daemon=True)
        self._thread.start()
        logger.info("[HEARTBEAT] Started (tick every %ss)", self.tick_interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("[HEARTBEAT] Stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error("[HEARTBEAT] Tick failed: %s", e)
            self._stop_event.wait(self.tick_interval)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """
        Run every due entry once.

        Returns:
            Names of the entries that ran.
        """
        now = now or utc_now()
        ran = []

        for entry in self.store.get_heartbeat_entries():
            try:
                parse_schedule(entry.schedule)
                due = is_due(entry, now)
            except HeartbeatScheduleError as e:
                logger.warning("[HEARTBEAT] Skipping %s: %s", entry.name, e)
                continue
            if not due:
                continue

            self._run_entry(entry, now)
            ran.append(entry.name)

        return ran

    def _run_entry(self, entry: HeartbeatEntry, now: datetime) -> Optional[str]:
        task = self.tasks.get(entry.task)
        reason = None

        if task is None:
            logger.warning("[HEARTBEAT] %s: unknown task '%s'", entry.name, entry.task)
        else:
            try:
                reason = task(self.context, entry.params or {})
            except Exception as e:
                logger.error("[HEARTBEAT] %s (%s) failed: %s", entry.name, entry.task, e)

        self.store.update_heartbeat_last_run(
            entry.name,
            to_iso(now),
            next_run=to_iso(next_run_after(entry.schedule, now)),
        )

        if reason:
            logger.info("[HEARTBEAT] Wake request from %s: %s", entry.name, reason)
            self.keys.request_wake(reason)
        return reason

    def run_now(self, name: str) -> Optional[str]:
        """Run one entry immediately, regardless of schedule. Returns its wake reason."""
        entry = self.store.get_heartbeat_entry(name)
        if entry is None:
            raise KeyError(f"No heartbeat entry named '{name}'")
        return self._run_entry(entry, utc_now())
