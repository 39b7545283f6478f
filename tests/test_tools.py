"""Tests for the tool registry and the built-in tools."""

import time
from datetime import timedelta

from automaton_core.state.records import AgentState, InboxMessage, utc_now
from automaton_core.survival import FinancialGate
from automaton_core.tools.base import BaseTool, ToolDefinition, ToolRegistry, ToolResult
from automaton_core.tools.builtin import CheckCreditsTool, SleepTool, SystemStatusTool, create_builtin_tools

from conftest import EchoTool, FailingTool


class SlowTool(BaseTool):
    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(name="slow", description="Takes its time")

    def execute(self) -> ToolResult:
        time.sleep(0.5)
        return ToolResult(success=True, output="done")


class BigTool(BaseTool):
    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(name="big", description="Very chatty")

    def execute(self) -> ToolResult:
        return ToolResult(success=True, output="x" * 500)


class RecordingTool(BaseTool):
    def __init__(self, name, log, delay=0.0):
        self._name = name
        self.log = log
        self.delay = delay

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self._name, description="Records when it runs")

    def execute(self) -> ToolResult:
        self.log.append(f"{self._name}-start")
        time.sleep(self.delay)
        self.log.append(f"{self._name}-end")
        return ToolResult(success=True, output="ok")


class BrokenTool(BaseTool):
    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(name="broken", description="Fails inside its own body")

    def execute(self) -> ToolResult:
        return len(5)


class TestToolRegistry:
    def test_register_and_list(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        assert registry.has("echo")
        assert registry.list_tools() == ["echo"]
        assert registry.get_schemas()[0]["function"]["parameters"]["required"] == ["message"]
        assert registry.unregister("echo")
        assert not registry.unregister("echo")

    def test_execute(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        result = registry.execute("echo", {"message": "hi"})
        assert result.success
        assert result.output == "Echo: hi"

    def test_unknown_tool(self):
        result = ToolRegistry().execute("nope", {})
        assert not result.success
        assert result.error == "Unknown tool: nope"

    def test_missing_required_parameter(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        result = registry.execute("echo", {"wrong": 1})
        assert not result.success
        assert result.error == "Invalid parameters for echo: missing required message"

    def test_unexpected_parameter(self):
        registry = ToolRegistry()
        registry.register(EchoTool())
        result = registry.execute("echo", {"message": "hi", "volume": 11})
        assert not result.success
        assert result.error.startswith("Invalid parameters for echo")

    def test_duration_recorded(self):
        registry = ToolRegistry()
        registry.register(SlowTool())
        assert registry.execute("slow", {}).duration_ms >= 400

    def test_exception_becomes_failed_result(self):
        registry = ToolRegistry()
        registry.register(FailingTool())
        result = registry.execute("explode", {})
        assert not result.success
        assert "kaboom" in result.error

    def test_timeout(self):
        registry = ToolRegistry()
        registry.register(SlowTool())
        result = registry.execute("slow", {}, timeout=0.05)
        assert not result.success
        assert "timed out" in result.error

    def test_call_after_timeout_waits_for_abandoned_call(self):
        log = []
        registry = ToolRegistry()
        registry.register(RecordingTool("slow", log, delay=0.3))
        registry.register(RecordingTool("read", log))

        assert not registry.execute("slow", {}, timeout=0.05).success
        assert registry.execute("read", {}).success
        assert log == ["slow-start", "slow-end", "read-start", "read-end"]

    def test_type_error_inside_tool_is_execution_error(self):
        registry = ToolRegistry()
        registry.register(BrokenTool())
        result = registry.execute("broken", {})
        assert not result.success
        assert result.error.startswith("Tool execution error")

    def test_output_truncated(self):
        registry = ToolRegistry(max_output_size=100)
        registry.register(BigTool())
        result = registry.execute("big", {})
        assert result.output.startswith("x" * 100)
        assert "[TRUNCATED" in result.output
        assert result.metadata["original_size"] == 500

    def test_tool_descriptions(self, store, loop_keys):
        registry = ToolRegistry()
        for tool in create_builtin_tools(store, loop_keys, FinancialGate()):
            registry.register(tool)
        descriptions = registry.get_tool_descriptions()
        assert "sleep" in descriptions
        assert "check_credits" in descriptions


class TestSleepTool:
    def test_sets_sleep_until(self, loop_keys):
        result = SleepTool(loop_keys).execute(duration_seconds=300, reason="quiet")
        assert result.success
        assert "Reason: quiet" in result.output
        remaining = (loop_keys.get_sleep_until() - utc_now()).total_seconds()
        assert 290 <= remaining <= 301

    def test_clamps_duration(self, loop_keys):
        SleepTool(loop_keys).execute(duration_seconds=10 ** 9)
        remaining = (loop_keys.get_sleep_until() - utc_now()).total_seconds()
        assert remaining <= 7 * 24 * 3600

        SleepTool(loop_keys).execute(duration_seconds=-5)
        remaining = (loop_keys.get_sleep_until() - utc_now()).total_seconds()
        assert remaining <= 1

    def test_rejects_non_integer(self, loop_keys):
        result = SleepTool(loop_keys).execute(duration_seconds="later")
        assert not result.success
        assert loop_keys.get_sleep_until() is None


class TestCheckCreditsTool:
    def test_reports_balances_and_tier(self):
        gate = FinancialGate(credits_source=lambda: 80, usdc_source=lambda: 3.5)
        result = CheckCreditsTool(gate).execute()
        assert result.output == "Credits: $0.80\nUSDC: 3.5000\nTier: critical"
        assert result.metadata["tier"] == "critical"

    def test_without_credit_source(self):
        result = CheckCreditsTool(FinancialGate()).execute()
        assert result.success
        assert "unmetered" in result.output
        assert "$0.00" not in result.output


class TestSystemStatusTool:
    def test_reports_state(self, store, loop_keys):
        loop_keys.set_agent_state(AgentState.RUNNING)
        loop_keys.ensure_start_time()
        store.insert_inbox_message(InboxMessage(id="m1", sender="alice", content="hi"))

        output = SystemStatusTool(store, loop_keys).execute().output
        assert "State: running" in output
        assert "Turns: 0" in output
        assert "Uptime:" in output
        assert "Unread messages: 1" in output

    def test_without_start_time(self, store, loop_keys):
        output = SystemStatusTool(store, loop_keys).execute().output
        assert "Uptime" not in output
