"""
AUTOMATON RUNTIME
=================

The host process loop that owns the agent loop and the heartbeat.

The automaton alternates between running and sleeping:

::

    ┌──────────────┐  sleeping   ┌───────────────────────────────┐
    │ AgentLoop.run│ ──────────▶ │ sleep until sleep_until       │
    │              │ ◀────────── │ (poll wake_request every 30s) │
    └──────────────┘   wake      └───────────────────────────────┘
           │ dead
           ▼
    wait 5 minutes (heartbeat keeps checking credits), retry

Sleep rules
-----------
- Sleep length is ``sleep_until - now``, at least 10s; 60s if
  ``sleep_until`` is missing.
- ``wake_request`` is polled every ``min(sleep, 30s)``. A request is
  consumed together with ``sleep_until`` in one transaction.
- ``sleep_until`` is always cleared when the sleep ends.

Shutdown
--------
SIGINT / SIGTERM only set a flag. The current turn finishes, then the
host stops the heartbeat and records ``sleeping`` through the agent loop
(which owns ``agent_state``).
"""

import logging
import signal
import threading
from typing import Optional

from .loop import AgentLoop
from .scheduler.heartbeat import HeartbeatScheduler
from .state.keys import CoordinationKeys, Role
from .state.records import AgentState, InputSource, TurnInput, utc_now
from .state.store import StateStore

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

DEAD_RETRY_SECONDS = 300
MIN_SLEEP_SECONDS = 10
DEFAULT_SLEEP_SECONDS = 60
WAKE_POLL_SECONDS = 30
ERROR_RETRY_SECONDS = 30


class AutomatonRuntime:
    """Runs the agent loop forever, sleeping and waking it as directed."""

    def __init__(
        self,
        loop: AgentLoop,
        store: StateStore,
        heartbeat: Optional[HeartbeatScheduler] = None,
    ):
        self.loop = loop
        self.store = store
        self.heartbeat = heartbeat
        self.keys = CoordinationKeys(store, Role.RUNTIME)

        self._stop_event = threading.Event()
        self._shut_down = False
        self._next_input: Optional[TurnInput] = None

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to ``request_stop``. Main thread only."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, frame) -> None:
        logger.info("Received %s, shutting down after the current turn...", signal.Signals(signum).name)
        self.request_stop()

    def request_stop(self) -> None:
        """Ask the host to stop. Safe to call from a signal handler or another thread."""
        self._stop_event.set()
        self.loop.stop()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def shutdown(self) -> None:
        """Stop the heartbeat. After a requested stop, also record ``sleeping``."""
        if self._shut_down:
            return
        self._shut_down = True
        if self.heartbeat is not None:
            self.heartbeat.stop()
        if self.stopping:
            self.loop.suspend()
        logger.info("Automaton shut down.")

    # ========================================================================
    # MAIN LOOP
    # ========================================================================

    def run_forever(self, max_cycles: Optional[int] = None) -> None:
        """
        Alternate between running and sleeping until stopped.

        Args:
            max_cycles: Stop after this many agent-loop runs (None = forever).
        """
        if self.heartbeat is not None:
            self.heartbeat.start()

        cycles = 0
        try:
            while not self.stopping:
                if max_cycles is not None and cycles >= max_cycles:
                    break
                cycles += 1
                try:
                    self.run_cycle()
                except Exception as e:
                    logger.error("Fatal error in run loop: %s", e, exc_info=True)
                    self._wait(ERROR_RETRY_SECONDS)
        finally:
            self.shutdown()

    def run_cycle(self) -> AgentState:
        """Run the agent loop once, then sleep or wait as its final state requires."""
        initial_input, self._next_input = self._next_input, None
        state = self.loop.run(initial_input)

        if self.stopping:
            return state

        if state == AgentState.DEAD:
            logger.warning("Automaton is dead. Heartbeat will continue; retrying in %ds.", DEAD_RETRY_SECONDS)
            self._queue_wake(self._wait_for_wake(DEAD_RETRY_SECONDS))
        elif state == AgentState.SLEEPING:
            self._queue_wake(self.sleep())
        return state

    def sleep(self) -> Optional[str]:
        """
        Sleep until ``sleep_until`` or a wake request, whichever comes first.

        Returns:
            The wake reason, or None if the sleep ran its course.
        """
        sleep_until = self.keys.get_sleep_until()
        if sleep_until is not None:
            remaining = (sleep_until - utc_now()).total_seconds()
        else:
            remaining = DEFAULT_SLEEP_SECONDS
        sleep_seconds = max(remaining, MIN_SLEEP_SECONDS)

        logger.info("[SLEEP] Sleeping for %ds", round(sleep_seconds))
        reason = self._wait_for_wake(sleep_seconds)
        if reason is None and not self.stopping:
            self.keys.clear_sleep_until()
        return reason

    def _wait_for_wake(self, seconds: float) -> Optional[str]:
        check_interval = min(seconds, WAKE_POLL_SECONDS)
        slept = 0.0
        while slept < seconds:
            if self._wait(check_interval):
                return None
            slept += check_interval

            reason = self.keys.consume_wake_request()
            if reason:
                logger.info("[WAKE] Woken by heartbeat: %s", reason)
                return reason
        return None

    def _queue_wake(self, reason: Optional[str]) -> None:
        if reason:
            self._next_input = TurnInput(
                content=f"You were woken up early: {reason}",
                source=InputSource.SYSTEM,
            )

    def _wait(self, seconds: float) -> bool:
        """Interruptible sleep. True if a stop was requested."""
        return self._stop_event.wait(seconds)
