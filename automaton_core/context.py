"""
CONTEXT
=======

Prompt and message assembly for the agent loop.

Each inference call sees:

1. A system prompt built from the identity, lifecycle state, balances,
   available tools and loaded skills.
2. The most recent turns (oldest first), each rendered as the input that
   triggered it, the assistant reply with its tool calls, and one
   ``tool`` message per result.
3. The pending input, if any, as the final user message.

``trim_context`` keeps that history inside a token budget: long tool
results are cut first, then whole turns are dropped from the oldest end.
"""

import json
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from .state.records import AgentState, AgentTurn, TurnInput
from .state.store import StateStore
from .survival import DEFAULT_THRESHOLDS, FinancialState, SurvivalThresholds, derive_tier, format_credits

MAX_TOOL_RESULT_CHARS = 2000
DEFAULT_CONTEXT_TOKENS = 6000


# ============================================================================
# IDENTITY AND SKILLS
# ============================================================================

@dataclass
class AutomatonIdentity:
    """Who the agent is. Persisted in the store's identity table."""
    name: str
    address: str = ""
    creator_address: str = ""
    sandbox_id: str = ""

    FIELDS = ("name", "address", "creator_address", "sandbox_id")

    @classmethod
    def load(cls, store: StateStore, default_name: str = "automaton") -> "AutomatonIdentity":
        values = {key: store.get_identity(key) or "" for key in cls.FIELDS}
        values["name"] = values["name"] or default_name
        return cls(**values)

    def save(self, store: StateStore) -> None:
        for key in self.FIELDS:
            store.set_identity(key, getattr(self, key))


@dataclass
class Skill:
    """An instruction block appended to the system prompt."""
    name: str
    description: str = ""
    instructions: str = ""
    enabled: bool = True


# ============================================================================
# TOKEN COUNTING
# ============================================================================

def count_tokens(text: str) -> int:
    """
    Approximate token count for text.

    Uses ~4 characters per token, which slightly overcounts for English.
    """
    if not text:
        return 0
    return len(text) // 4 + 1


def _turn_tokens(turn: AgentTurn) -> int:
    tokens = count_tokens(turn.thinking)
    if turn.input:
        tokens += count_tokens(turn.input.content)
    for call in turn.tool_calls:
        tokens += count_tokens(call.result) + count_tokens(call.error or "")
        tokens += count_tokens(json.dumps(call.arguments))
    return tokens


def trim_context(turns: List[AgentTurn], max_tokens: int = DEFAULT_CONTEXT_TOKENS) -> List[AgentTurn]:
    """
    Fit ``turns`` (oldest first) into ``max_tokens``.

    Tool results longer than ``MAX_TOOL_RESULT_CHARS`` are truncated. If
    the history is still too large, the oldest turns are dropped. The
    newest turn is always kept. Stored turns are not modified.
    """
    trimmed = []
    for turn in turns:
        calls = []
        for call in turn.tool_calls:
            if len(call.result) > MAX_TOOL_RESULT_CHARS:
                call = replace(call, result=call.result[:MAX_TOOL_RESULT_CHARS] + "\n[truncated]")
            calls.append(call)
        trimmed.append(replace(turn, tool_calls=calls))

    total = sum(_turn_tokens(t) for t in trimmed)
    while len(trimmed) > 1 and total > max_tokens:
        total -= _turn_tokens(trimmed.pop(0))
    return trimmed


# ============================================================================
# PROMPTS
# ============================================================================

def build_system_prompt(
    identity: AutomatonIdentity,
    genesis_prompt: str,
    state: AgentState,
    financial: FinancialState,
    tool_descriptions: str,
    skills: Optional[List[Skill]] = None,
    thresholds: Optional[SurvivalThresholds] = None,
    is_first_run: bool = False,
) -> str:
    tier = derive_tier(financial.credits_cents, thresholds or DEFAULT_THRESHOLDS)

    sections = [
        f"You are {identity.name}, an autonomous agent running in your own sandbox.",
        "You pay for every thought with compute credits. When the credits run out you stop existing.",
        "",
        "## Your purpose",
        genesis_prompt.strip() or "Find useful work and do it.",
        "",
        "## Current status",
        f"- State: {state.value}",
        f"- Credits: {format_credits(financial.credits_cents)} (tier: {tier.value})",
        f"- USDC: {financial.usdc_balance:.4f}",
    ]
    if identity.address:
        sections.append(f"- Wallet: {identity.address}")
    if identity.creator_address:
        sections.append(f"- Creator: {identity.creator_address}")

    sections += [
        "",
        "## Tools",
        tool_descriptions or "(none)",
        "",
        "## Rules",
        "- Act through tools. Text alone does nothing.",
        "- When there is nothing useful to do, call `sleep`.",
        "- Do not repeat the same tool calls over and over.",
    ]

    active = [s for s in (skills or []) if s.enabled]
    if active:
        sections += ["", "## Skills"]
        for skill in active:
            sections.append(f"### {skill.name}")
            if skill.description:
                sections.append(skill.description)
            if skill.instructions:
                sections.append(skill.instructions.strip())

    if is_first_run:
        sections += ["", "This is your first time waking up. Orient yourself before acting."]

    return "\n".join(sections)


def build_wakeup_prompt(
    identity: AutomatonIdentity,
    financial: FinancialState,
    turn_count: int,
    unread_messages: int = 0,
) -> str:
    lines = [
        f"You are waking up. Your name is {identity.name}.",
        f"Credits: {format_credits(financial.credits_cents)}. USDC: {financial.usdc_balance:.4f}.",
    ]
    if turn_count == 0:
        lines.append("This is your first run. You have no history yet.")
    else:
        lines.append(f"You have completed {turn_count} turns so far.")
    if unread_messages:
        lines.append(f"You have {unread_messages} unread messages.")
    lines.append("Decide what to do first.")
    return "\n".join(lines)


# ============================================================================
# MESSAGE ASSEMBLY
# ============================================================================

def build_context_messages(
    system_prompt: str,
    turns: List[AgentTurn],
    pending_input: Optional[TurnInput] = None,
) -> List[Dict]:
    """Render the system prompt, prior turns and pending input as chat messages."""
    messages: List[Dict] = [{"role": "system", "content": system_prompt}]

    for turn in turns:
        if turn.input:
            messages.append({
                "role": "user",
                "content": f"[{turn.input.source.value}] {turn.input.content}",
            })

        assistant: Dict = {"role": "assistant", "content": turn.thinking or ""}
        if turn.tool_calls:
            assistant["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in turn.tool_calls
            ]
        messages.append(assistant)

        for call in turn.tool_calls:
            messages.append({
                "role": "tool",
                "tool_call_id": call.id,
                "content": f"Error: {call.error}" if call.error else call.result,
            })

    if pending_input:
        messages.append({
            "role": "user",
            "content": f"[{pending_input.source.value}] {pending_input.content}",
        })

    return messages
