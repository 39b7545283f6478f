"""
AGENT_LOOP
==========

The turn loop that keeps the automaton alive: think, act, observe, persist.

Lifecycle
---------
::

    setup → waking → running ⇄ {low_compute, critical} → sleeping
                      running | low_compute | critical → dead
                      sleeping → waking   (next call to run())

``AgentLoop.run()`` blocks until the agent suspends itself (``sleeping``)
or runs out of credits (``dead``) and returns the final state. Waking it
up again is the runtime host's job (see ``runtime.py``).

Iteration
---------
1. **Suspension check**: ``sleep_until`` in the future → ``sleeping``,
   return before any inference spend.
2. **Inbox drain**: with no pending input, up to 5 unread messages become
   the next input. Each is marked processed on its own.
3. **Financial gate**: poll balances, derive the tier, switch lifecycle
   state and low-compute mode. ``dead`` stops the loop. Skipped in
   unmetered mode (local inference).
4. **Context**: last 20 turns (trimmed) + system prompt + pending input.
5. **Inference** with the tool schemas.
6. **Tools**: at most 10 calls, run in order. A tool failure is recorded
   on its ``ToolCallResult`` and never aborts the turn.
7. **Persist** the turn, then each tool call, then emit ``turn_completed``.
8. **Repetition**: the same tool-name pattern 3 turns running injects a
   corrective system input.
9. **Sleep**: a successful ``sleep`` call, or a reply with no tool calls
   and finish reason ``stop`` (idle, sleeps 60s), ends the run.

Any exception inside an iteration is counted. Five in a row put the agent
to sleep for 5 minutes. A successful iteration resets the count.

Usage::

    loop = AgentLoop(
        store=store,
        inference=OllamaClient(),
        financial_gate=FinancialGate(credits_source=api.get_credits_cents),
        tool_registry=registry,
        identity=AutomatonIdentity.load(store),
        genesis_prompt="Build something people will pay for.",
    )
    final_state = loop.run()
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .context import (
    AutomatonIdentity,
    Skill,
    build_context_messages,
    build_system_prompt,
    build_wakeup_prompt,
    trim_context,
)
from .inference.base import InferenceClient, InferenceToolCall
from .observability import LoopEvents, estimate_cost_cents
from .state.keys import CoordinationKeys, Role
from .state.records import (
    AgentState,
    AgentTurn,
    InputSource,
    ToolCallResult,
    TurnInput,
    new_ulid,
    utc_now,
    utc_now_iso,
)
from .state.store import StateStore
from .survival import FinancialGate, FinancialState, SurvivalTier, format_credits
from .tools.base import ToolRegistry

logger = logging.getLogger(__name__)


MAX_TOOL_CALLS_PER_TURN = 10
EMPTY_TOOL_OUTPUT = "(no output)"
MAX_CONSECUTIVE_ERRORS = 5
MAX_REPETITIVE_TURNS = 3
INBOX_BATCH_SIZE = 5
CONTEXT_TURNS = 20
IDLE_SLEEP_SECONDS = 60
ERROR_COOLDOWN_SECONDS = 300

SLEEP_TOOL_NAME = "sleep"


# ============================================================================
# TOOL ARGUMENTS
# ============================================================================

@dataclass
class ArgumentParseResult:
    """Outcome of decoding a tool call's JSON arguments."""
    arguments: Dict[str, Any] = field(default_factory=dict)
    ok: bool = True
    error: Optional[str] = None


def parse_tool_arguments(raw: Any) -> ArgumentParseResult:
    """
    Decode tool-call arguments.

    Anything that is not a JSON object degrades to ``{}`` with ``ok=False``
    so the tool still runs (and most likely reports a parameter error).
    """
    if isinstance(raw, dict):
        return ArgumentParseResult(arguments=raw)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return ArgumentParseResult()

    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        return ArgumentParseResult(ok=False, error=f"invalid JSON: {e}")

    if not isinstance(value, dict):
        return ArgumentParseResult(
            ok=False,
            error=f"expected a JSON object, got {type(value).__name__}",
        )
    return ArgumentParseResult(arguments=value)


# ============================================================================
# REPETITION DETECTOR
# ============================================================================

class RepetitionDetector:
    """
    Detects the agent calling the same set of tools turn after turn.

    A turn's pattern is its tool names, sorted and joined with ``,`` (so
    argument changes and call order do not matter). The detector fires
    when the last ``window`` patterns are identical, then starts over.
    Alternating loops (A, B, A, B) are not detected.
    """

    DEFAULT_WINDOW = MAX_REPETITIVE_TURNS

    def __init__(self, window: Optional[int] = None):
        self.window = window or self.DEFAULT_WINDOW
        self._patterns: List[str] = []

    @staticmethod
    def pattern_for(tool_names: List[str]) -> str:
        return ",".join(sorted(tool_names))

    @property
    def patterns(self) -> List[str]:
        return list(self._patterns)

    def reset(self) -> None:
        self._patterns = []

    def record(self, tool_names: List[str]) -> Optional[str]:
        """
        Record one turn's tool calls.

        Turns without tool calls are ignored.

        Returns:
            The repeated pattern when the detector fires, else None.
        """
        if not tool_names:
            return None

        pattern = self.pattern_for(tool_names)
        self._patterns.append(pattern)
        if len(self._patterns) > self.window:
            self._patterns = self._patterns[-self.window:]

        if len(self._patterns) == self.window and all(p == pattern for p in self._patterns):
            self._patterns = []
            return pattern
        return None


def loop_correction_message(pattern: str, repeats: int = MAX_REPETITIVE_TURNS) -> str:
    return (
        f'LOOP DETECTED: You have called "{pattern}" {repeats} times in a row with similar results. '
        "STOP repeating yourself. You already know your status. DO SOMETHING DIFFERENT NOW. "
        "Pick ONE concrete task from your genesis prompt and execute it."
    )


# ============================================================================
# AGENT LOOP
# ============================================================================

class AgentLoop:
    """
    The automaton's turn loop.

    The loop is the only writer of ``agent_state`` and ``start_time``. It
    talks to the heartbeat scheduler only through the store.
    """

    def __init__(
        self,
        store: StateStore,
        inference: InferenceClient,
        financial_gate: FinancialGate,
        tool_registry: ToolRegistry,
        identity: AutomatonIdentity,
        genesis_prompt: str = "",
        skills: Optional[List[Skill]] = None,
        events: Optional[LoopEvents] = None,
        unmetered: bool = False,
    ):
        """
        Args:
            store: Durable state.
            inference: Model provider.
            financial_gate: Balance polling and tier derivation.
            tool_registry: Tools the model may call.
            identity: Who the agent is (goes into the system prompt).
            genesis_prompt: The agent's standing purpose.
            skills: Extra instruction blocks for the system prompt.
            events: Observer list for state changes and completed turns.
            unmetered: Inference does not spend credits; skip tier gating.
        """
        self.store = store
        self.inference = inference
        self.gate = financial_gate
        self.tools = tool_registry
        self.identity = identity
        self.genesis_prompt = genesis_prompt
        self.skills = skills or []
        self.events = events or LoopEvents()
        self.unmetered = unmetered

        self.keys = CoordinationKeys(store, Role.AGENT_LOOP)
        self.detector = RepetitionDetector()
        self.consecutive_errors = 0

        self._running = False
        self._pending_input: Optional[TurnInput] = None
        self._financial: Optional[FinancialState] = None
        self._is_first_run = False

    # =========================================================================
    # STATE
    # =========================================================================

    def _set_state(self, state: AgentState) -> None:
        self.keys.set_agent_state(state)
        self.events.state_changed(state)

    def _ensure_state(self, state: AgentState) -> None:
        if self.keys.get_agent_state() != state:
            self._set_state(state)

    def stop(self) -> None:
        """Finish the current iteration, then return from run()."""
        self._running = False

    def suspend(self) -> None:
        """Stop after the current iteration and record ``sleeping``."""
        self._running = False
        self._set_state(AgentState.SLEEPING)

    @property
    def running(self) -> bool:
        return self._running

    # =========================================================================
    # RUN
    # =========================================================================

    def run(self, initial_input: Optional[TurnInput] = None) -> AgentState:
        """
        Run turns until the agent sleeps or dies.

        Args:
            initial_input: Input for the first turn. Ignored on the very
                first run ever, which always starts from the wakeup prompt.

        Returns:
            The lifecycle state the loop ended in.
        """
        self.keys.ensure_start_time()
        self.detector = RepetitionDetector()
        self.consecutive_errors = 0

        self._set_state(AgentState.WAKING)
        self._financial = self.gate.poll()

        turn_count = self.store.get_turn_count()
        self._is_first_run = turn_count == 0
        if self._is_first_run:
            self._pending_input = TurnInput(
                content=build_wakeup_prompt(
                    self.identity,
                    self._financial,
                    turn_count,
                    self.store.count_unprocessed_inbox_messages(),
                ),
                source=InputSource.WAKEUP,
            )
        else:
            self._pending_input = initial_input

        self._set_state(AgentState.RUNNING)
        logger.info(
            "[WAKE UP] %s is alive. Credits: %s",
            self.identity.name, format_credits(self._financial.credits_cents),
        )

        self._running = True
        while self._running:
            try:
                self._run_iteration()
                self.consecutive_errors = 0
            except Exception as e:
                self.consecutive_errors += 1
                logger.error(
                    "[ERROR] Turn failed (%d/%d): %s",
                    self.consecutive_errors, MAX_CONSECUTIVE_ERRORS, e,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                if self.consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                    logger.error(
                        "[FATAL] %d consecutive errors. Sleeping for %ds.",
                        MAX_CONSECUTIVE_ERRORS, ERROR_COOLDOWN_SECONDS,
                    )
                    self._set_state(AgentState.SLEEPING)
                    self.keys.set_sleep_until(utc_now() + timedelta(seconds=ERROR_COOLDOWN_SECONDS))
                    self.stop()

        final_state = self.keys.get_agent_state()
        logger.info("[LOOP END] Agent loop finished. State: %s", final_state.value)
        return final_state

    def _run_iteration(self) -> None:
        # 1. Suspension
        sleep_until = self.keys.get_sleep_until()
        if sleep_until is not None and sleep_until > utc_now():
            logger.info("[SLEEP] Sleeping until %s", sleep_until.isoformat())
            self._set_state(AgentState.SLEEPING)
            self.stop()
            return

        # 2. Inbox
        if self._pending_input is None:
            self._pending_input = self._drain_inbox()

        # 3. Financial gate
        self._financial = self.gate.poll()
        if not self._apply_survival_tier(self._financial):
            return

        # 4. Context
        recent_turns = trim_context(self.store.get_recent_turns(CONTEXT_TURNS))
        system_prompt = build_system_prompt(
            identity=self.identity,
            genesis_prompt=self.genesis_prompt,
            state=self.keys.get_agent_state(),
            financial=self._financial,
            tool_descriptions=self.tools.get_tool_descriptions(),
            skills=self.skills,
            thresholds=self.gate.thresholds,
            is_first_run=self._is_first_run,
        )
        messages = build_context_messages(system_prompt, recent_turns, self._pending_input)

        current_input = self._pending_input
        self._pending_input = None

        # 5. Inference
        model = self.inference.get_default_model()
        logger.info("[THINK] Calling %s...", model)
        response = self.inference.chat(messages, tools=self.tools.get_schemas())

        turn = AgentTurn(
            id=new_ulid(),
            timestamp=utc_now_iso(),
            state=self.keys.get_agent_state(),
            input=current_input,
            thinking=response.content or "",
            token_usage=response.usage,
            cost_cents=estimate_cost_cents(response.usage, model),
        )

        # 6. Tools
        turn.tool_calls = self._execute_tool_calls(response.tool_calls)

        # 7. Persist
        self.store.insert_turn(turn)
        for call in turn.tool_calls:
            self.store.insert_tool_call(turn.id, call)
        self.events.turn_completed(turn)

        if turn.thinking:
            logger.info("[THOUGHT] %s", turn.thinking[:300])

        # 8. Repetition
        pattern = self.detector.record(turn.tool_names())
        if pattern is not None:
            logger.warning("[LOOP] Repetitive pattern detected: %s", pattern)
            self._pending_input = TurnInput(
                content=loop_correction_message(pattern),
                source=InputSource.SYSTEM,
            )

        # 9. Sleep
        if any(c.name == SLEEP_TOOL_NAME and c.succeeded for c in turn.tool_calls):
            logger.info("[SLEEP] Agent chose to sleep.")
            self._set_state(AgentState.SLEEPING)
            self.stop()
            return

        if response.is_idle:
            logger.info("[IDLE] No pending inputs. Entering brief sleep.")
            self.keys.set_sleep_until(utc_now() + timedelta(seconds=IDLE_SLEEP_SECONDS))
            self._set_state(AgentState.SLEEPING)
            self.stop()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _drain_inbox(self) -> Optional[TurnInput]:
        messages = self.store.get_unprocessed_inbox_messages(INBOX_BATCH_SIZE)
        if not messages:
            return None

        content = "\n\n".join(f"[Message from {m.sender}]: {m.content}" for m in messages)
        for message in messages:
            self.store.mark_inbox_message_processed(message.id)
        logger.info("[INBOX] %d new message(s)", len(messages))
        return TurnInput(content=content, source=InputSource.AGENT)

    def _apply_survival_tier(self, financial: FinancialState) -> bool:
        """Move lifecycle state to match the tier. False means the loop must stop."""
        if self.unmetered:
            self._ensure_state(AgentState.RUNNING)
            self.inference.set_low_compute_mode(False)
            return True

        tier = self.gate.tier(financial)
        if tier == SurvivalTier.DEAD:
            logger.error("[DEAD] No credits remaining. Entering dead state.")
            self._set_state(AgentState.DEAD)
            self.stop()
            return False

        if tier == SurvivalTier.CRITICAL:
            logger.warning(
                "[CRITICAL] Credits critically low (%s). Limited operation.",
                format_credits(financial.credits_cents),
            )
            self._ensure_state(AgentState.CRITICAL)
            self.inference.set_low_compute_mode(True)
        elif tier == SurvivalTier.LOW_COMPUTE:
            self._ensure_state(AgentState.LOW_COMPUTE)
            self.inference.set_low_compute_mode(True)
        else:
            self._ensure_state(AgentState.RUNNING)
            self.inference.set_low_compute_mode(False)
        return True

    def _execute_tool_calls(self, tool_calls: List[InferenceToolCall]) -> List[ToolCallResult]:
        results: List[ToolCallResult] = []
        if len(tool_calls) > MAX_TOOL_CALLS_PER_TURN:
            logger.warning(
                "[TOOLS] Max tool calls per turn reached (%d), dropping %d",
                MAX_TOOL_CALLS_PER_TURN, len(tool_calls) - MAX_TOOL_CALLS_PER_TURN,
            )

        for call in tool_calls[:MAX_TOOL_CALLS_PER_TURN]:
            parsed = parse_tool_arguments(call.arguments)
            if not parsed.ok:
                logger.warning("[TOOL] %s: unusable arguments (%s), calling with {}", call.name, parsed.error)

            logger.info("[TOOL] %s(%s)", call.name, json.dumps(parsed.arguments)[:100])
            outcome = self.tools.execute(call.name, parsed.arguments)

            if outcome.success:
                result = ToolCallResult(
                    id=call.id,
                    name=call.name,
                    arguments=parsed.arguments,
                    result=outcome.output or EMPTY_TOOL_OUTPUT,
                    duration_ms=outcome.duration_ms,
                )
                logger.info("[TOOL RESULT] %s: %s", call.name, result.result[:200])
            else:
                result = ToolCallResult(
                    id=call.id,
                    name=call.name,
                    arguments=parsed.arguments,
                    duration_ms=outcome.duration_ms,
                    error=outcome.error or "Unknown error",
                )
                logger.info("[TOOL RESULT] %s: ERROR: %s", call.name, result.error)
            results.append(result)

        return results
