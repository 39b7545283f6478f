"""
BUILTIN_TOOLS
=============

Tools every automaton has, regardless of configuration (3 tools).

- ``sleep``: Suspend the agent for a number of seconds. Writes
  ``sleep_until``; the agent loop notices the successful call and stops.
- ``check_credits``: Report the current credit and USDC balances and the
  survival tier they imply.
- ``system_status``: Report lifecycle state, turn count and uptime.

All three act with the agent loop's key ownership, since they run inside
a turn.

Usage::

    keys = CoordinationKeys(store, Role.AGENT_LOOP)
    for tool in create_builtin_tools(store, keys, gate):
        registry.register(tool)
"""

from datetime import timedelta
from typing import List

from ..state.keys import CoordinationKeys
from ..state.records import to_iso, utc_now
from ..state.store import StateStore
from ..survival import FinancialGate, format_credits
from .base import BaseTool, ToolDefinition, ToolParameter, ToolResult

MIN_SLEEP_SECONDS = 1
MAX_SLEEP_SECONDS = 7 * 24 * 3600


class SleepTool(BaseTool):
    """Put the agent to sleep until a wake condition or the timer fires."""

    def __init__(self, keys: CoordinationKeys):
        self.keys = keys

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="sleep",
            description=(
                "Go to sleep for a number of seconds. Use this when you have nothing "
                "useful to do. You will be woken early if a message arrives."
            ),
            parameters=[
                ToolParameter(
                    name="duration_seconds",
                    type="integer",
                    description="How long to sleep, in seconds.",
                    required=True,
                ),
                ToolParameter(
                    name="reason",
                    type="string",
                    description="Why you are sleeping.",
                    required=False,
                ),
            ],
        )

    def execute(self, duration_seconds: int, reason: str = "") -> ToolResult:
        try:
            seconds = int(duration_seconds)
        except (TypeError, ValueError):
            return ToolResult(
                success=False,
                output="",
                error=f"duration_seconds must be an integer, got {duration_seconds!r}",
            )
        seconds = max(MIN_SLEEP_SECONDS, min(seconds, MAX_SLEEP_SECONDS))

        until = utc_now() + timedelta(seconds=seconds)
        self.keys.set_sleep_until(until)

        output = f"Sleeping for {seconds}s until {to_iso(until)}"
        if reason:
            output += f". Reason: {reason}"
        return ToolResult(success=True, output=output, metadata={"sleep_until": to_iso(until)})


class CheckCreditsTool(BaseTool):
    """Report balances through the financial gate."""

    def __init__(self, gate: FinancialGate):
        self.gate = gate

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="check_credits",
            description="Check your compute credit balance, USDC balance and survival tier.",
        )

    def execute(self) -> ToolResult:
        if not self.gate.has_credit_source:
            return ToolResult(success=True, output="Credits: unmetered (no balance source configured)")
        state = self.gate.poll()
        tier = self.gate.tier(state)
        return ToolResult(
            success=True,
            output=(
                f"Credits: {format_credits(state.credits_cents)}\n"
                f"USDC: {state.usdc_balance:.4f}\n"
                f"Tier: {tier.value}"
            ),
            metadata={**state.to_dict(), "tier": tier.value},
        )


class SystemStatusTool(BaseTool):
    """Report lifecycle state, turn count and uptime."""

    def __init__(self, store: StateStore, keys: CoordinationKeys):
        self.store = store
        self.keys = keys

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="system_status",
            description="Show your current state, how many turns you have taken and your uptime.",
        )

    def execute(self) -> ToolResult:
        state = self.keys.get_agent_state()
        turn_count = self.store.get_turn_count()
        start_time = self.keys.get_start_time()

        lines = [
            f"State: {state.value}",
            f"Turns: {turn_count}",
        ]
        if start_time is not None:
            uptime = int((utc_now() - start_time).total_seconds())
            lines.append(f"Uptime: {uptime}s (since {to_iso(start_time)})")
        lines.append(f"Unread messages: {self.store.count_unprocessed_inbox_messages()}")

        return ToolResult(success=True, output="\n".join(lines))


def create_builtin_tools(store: StateStore, keys: CoordinationKeys, gate: FinancialGate) -> List[BaseTool]:
    return [
        SleepTool(keys),
        CheckCreditsTool(gate),
        SystemStatusTool(store, keys),
    ]
