"""
OBSERVABILITY
=============

Event emission and cost estimation for the automaton.

``LoopEvents`` is the observer list the agent loop publishes to. The loop
calls ``state_changed`` on every lifecycle transition and
``turn_completed`` after each persisted turn. Subscribers are purely
observational: an exception in a subscriber is logged and dropped, it
never reaches the loop.

Usage::

    events = LoopEvents()
    events.subscribe(on_state_change=lambda s: print("state", s.value))
    loop = AgentLoop(..., events=events)
"""

import logging
import math
from typing import Callable, Dict, List, Optional

from .state.records import AgentState, AgentTurn, TokenUsage

logger = logging.getLogger(__name__)


# ============================================================================
# EVENTS
# ============================================================================

StateListener = Callable[[AgentState], None]
TurnListener = Callable[[AgentTurn], None]


class LoopEvents:
    """Observer list for agent-loop events."""

    def __init__(self):
        self._state_listeners: List[StateListener] = []
        self._turn_listeners: List[TurnListener] = []

    def subscribe(
        self,
        on_state_change: Optional[StateListener] = None,
        on_turn_complete: Optional[TurnListener] = None,
    ) -> None:
        if on_state_change is not None:
            self._state_listeners.append(on_state_change)
        if on_turn_complete is not None:
            self._turn_listeners.append(on_turn_complete)

    def state_changed(self, state: AgentState) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.warning("on_state_change listener failed: %s", e)

    def turn_completed(self, turn: AgentTurn) -> None:
        for listener in list(self._turn_listeners):
            try:
                listener(turn)
            except Exception as e:
                logger.warning("on_turn_complete listener failed: %s", e)


def log_state_change(state: AgentState) -> None:
    """Default subscriber used by the runtime host."""
    logger.info("State: %s", state.value)


def log_turn_complete(turn: AgentTurn) -> None:
    """Default subscriber used by the runtime host."""
    logger.info(
        "Turn %s: %d tools, %d tokens, %d cents",
        turn.id, len(turn.tool_calls), turn.token_usage.total_tokens, turn.cost_cents,
    )


# ============================================================================
# COST ESTIMATION
# ============================================================================

# US cents per 1M tokens
COST_PER_MILLION_CENTS: Dict[str, Dict[str, float]] = {
    "gpt-4o": {"input": 250, "output": 1000},
    "gpt-4o-mini": {"input": 15, "output": 60},
    "gpt-4.1": {"input": 200, "output": 800},
    "gpt-4.1-mini": {"input": 40, "output": 160},
    "gpt-4.1-nano": {"input": 10, "output": 40},
    "gpt-5.2": {"input": 200, "output": 800},
    "o1": {"input": 1500, "output": 6000},
    "o3-mini": {"input": 110, "output": 440},
    "o4-mini": {"input": 110, "output": 440},
    "claude-sonnet-4-5": {"input": 300, "output": 1500},
    "claude-haiku-4-5": {"input": 100, "output": 500},
}

DEFAULT_PRICING_MODEL = "gpt-4o"
COST_MARKUP = 1.3


def estimate_cost_cents(usage: TokenUsage, model: str) -> int:
    """Estimated cost of a call in whole cents (marked up, rounded up).

    Unknown models are priced as ``DEFAULT_PRICING_MODEL``.
    """
    rates = COST_PER_MILLION_CENTS.get(model) or COST_PER_MILLION_CENTS[DEFAULT_PRICING_MODEL]
    input_cost = usage.prompt_tokens / 1_000_000 * rates["input"]
    output_cost = usage.completion_tokens / 1_000_000 * rates["output"]
    # round() first so float noise like 2.0000000001 does not add a cent
    return int(math.ceil(round((input_cost + output_cost) * COST_MARKUP, 9)))
