"""
Built-in heartbeat tasks.

Each task takes ``(ctx, params)`` and returns a wake reason, or None to
let the agent keep sleeping. Tasks write only non-coordination KV keys
of their own; waking is done by the scheduler from the returned reason.
"""

import logging
from typing import Dict, Optional

from ..state.records import AgentState, utc_now_iso
from ..survival import SurvivalTier, format_credits, log_credit_check, tier_rank
from .heartbeat import HeartbeatContext, HeartbeatTask

logger = logging.getLogger(__name__)

LAST_PING_KEY = "last_heartbeat_ping"
LAST_TIER_KEY = "last_credit_tier"


def heartbeat_ping(ctx: HeartbeatContext, params: Dict) -> Optional[str]:
    """Liveness marker. Never wakes the agent."""
    now = utc_now_iso()
    ctx.store.set_kv(LAST_PING_KEY, now)
    logger.debug("[HEARTBEAT] ping (state=%s)", ctx.keys.get_agent_state().value)
    return None


def check_credits(ctx: HeartbeatContext, params: Dict) -> Optional[str]:
    """
    Poll balances and log the check.

    Wakes a dead agent once credits are back above the dead threshold, and
    any agent whose tier got worse since the previous check.
    """
    if ctx.financial_gate is None or not ctx.financial_gate.has_credit_source:
        return None

    state = ctx.financial_gate.poll()
    tier = ctx.financial_gate.tier(state)
    log_credit_check(ctx.store, state)

    previous_value = ctx.store.get_kv(LAST_TIER_KEY)
    ctx.store.set_kv(LAST_TIER_KEY, tier.value)

    if ctx.keys.get_agent_state() == AgentState.DEAD:
        if tier != SurvivalTier.DEAD:
            return f"Credits restored: {format_credits(state.credits_cents)}"
        return None

    try:
        previous = SurvivalTier(previous_value) if previous_value else None
    except ValueError:
        previous = None
    if previous is not None and tier_rank(tier) < tier_rank(previous):
        return f"Survival tier dropped from {previous.value} to {tier.value}"
    return None


def check_inbox(ctx: HeartbeatContext, params: Dict) -> Optional[str]:
    """Wake a sleeping agent when unread messages are waiting."""
    if ctx.keys.get_agent_state() != AgentState.SLEEPING:
        return None
    count = ctx.store.count_unprocessed_inbox_messages()
    if count:
        return f"{count} unread inbox message(s)"
    return None


BUILTIN_TASKS: Dict[str, HeartbeatTask] = {
    "heartbeat_ping": heartbeat_ping,
    "check_credits": check_credits,
    "check_inbox": check_inbox,
}
