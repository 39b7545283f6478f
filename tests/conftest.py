"""Shared fixtures: a temporary SQLite store, a scripted inference client and test tools."""

import json
from typing import Dict, List, Optional

import pytest

from automaton_core.context import AutomatonIdentity
from automaton_core.inference.base import (
    InferenceClient,
    InferenceResponse,
    InferenceToolCall,
)
from automaton_core.loop import AgentLoop
from automaton_core.observability import LoopEvents
from automaton_core.state.keys import CoordinationKeys, Role
from automaton_core.state.records import (
    AgentState,
    AgentTurn,
    TokenUsage,
    new_ulid,
    utc_now_iso,
)
from automaton_core.state.store import StateStore
from automaton_core.survival import FinancialGate
from automaton_core.tools.base import BaseTool, ToolDefinition, ToolParameter, ToolRegistry, ToolResult
from automaton_core.tools.builtin import create_builtin_tools


# ============================================================================
# INFERENCE
# ============================================================================

def tool_response(*calls, content: str = "") -> InferenceResponse:
    """Response requesting ``calls``: (name, args) pairs; args may be a dict or raw text."""
    tool_calls = []
    for idx, (name, args) in enumerate(calls):
        raw = args if isinstance(args, str) else json.dumps(args)
        tool_calls.append(InferenceToolCall(id=f"call_{idx}", name=name, arguments=raw))
    return InferenceResponse(
        content=content,
        tool_calls=tool_calls,
        usage=TokenUsage(prompt_tokens=100, completion_tokens=20),
        finish_reason="tool_calls",
    )


def idle_response(content: str = "Nothing to do.") -> InferenceResponse:
    return InferenceResponse(
        content=content,
        usage=TokenUsage(prompt_tokens=100, completion_tokens=10),
        finish_reason="stop",
    )


class ScriptedInference(InferenceClient):
    """Replays a list of responses (or raises listed exceptions), then goes idle."""

    def __init__(self, script: Optional[List] = None, model: str = "gpt-4o"):
        self.script = list(script or [])
        self.model = model
        self.calls: List[Dict] = []
        self.low_compute_calls: List[bool] = []

    def chat(self, messages, tools=None):
        self.calls.append({"messages": messages, "tools": tools})
        if not self.script:
            return idle_response()
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def set_low_compute_mode(self, enabled):
        self.low_compute_calls.append(enabled)

    def get_default_model(self):
        return self.model


# ============================================================================
# TOOLS
# ============================================================================

class EchoTool(BaseTool):
    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="echo",
            description="Echo back the input message",
            parameters=[ToolParameter(name="message", type="string", description="The message to echo")],
        )

    def execute(self, message: str) -> ToolResult:
        return ToolResult(success=True, output=f"Echo: {message}")


class FailingTool(BaseTool):
    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(name="explode", description="Always raises")

    def execute(self) -> ToolResult:
        raise RuntimeError("kaboom")


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def store(tmp_path):
    s = StateStore(str(tmp_path / "state.db"))
    yield s
    s.close()


@pytest.fixture
def loop_keys(store):
    return CoordinationKeys(store, Role.AGENT_LOOP)


@pytest.fixture
def heartbeat_keys(store):
    return CoordinationKeys(store, Role.HEARTBEAT)


@pytest.fixture
def runtime_keys(store):
    return CoordinationKeys(store, Role.RUNTIME)


class LoopHarness:
    """An AgentLoop wired to fakes, plus the recorded events."""

    def __init__(self, store: StateStore, script=None, credits_cents: int = 10_000,
                 unmetered: bool = False, credits_source=None):
        self.store = store
        self.inference = ScriptedInference(script)
        self.gate = FinancialGate(credits_source=credits_source or (lambda: credits_cents))
        self.registry = ToolRegistry()
        for tool in create_builtin_tools(store, CoordinationKeys(store, Role.AGENT_LOOP), self.gate):
            self.registry.register(tool)
        self.registry.register(EchoTool())
        self.registry.register(FailingTool())

        self.states: List[AgentState] = []
        self.turns: List[AgentTurn] = []
        self.events = LoopEvents()
        self.events.subscribe(on_state_change=self.states.append, on_turn_complete=self.turns.append)

        self.loop = AgentLoop(
            store=store,
            inference=self.inference,
            financial_gate=self.gate,
            tool_registry=self.registry,
            identity=AutomatonIdentity(name="testbot"),
            genesis_prompt="Test things.",
            events=self.events,
            unmetered=unmetered,
        )

    def run(self, initial_input=None) -> AgentState:
        return self.loop.run(initial_input)


@pytest.fixture
def make_harness(store):
    def _make(script=None, **kwargs) -> LoopHarness:
        return LoopHarness(store, script, **kwargs)
    return _make


def seed_turn(store: StateStore) -> AgentTurn:
    """Insert a prior turn so the next run is not the first run."""
    turn = AgentTurn(
        id=new_ulid(),
        timestamp=utc_now_iso(),
        state=AgentState.RUNNING,
        thinking="earlier",
    )
    store.insert_turn(turn)
    return turn
