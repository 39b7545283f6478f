"""
Tool system for the automaton.

Available Tools (3 built-in)
----------------------------
**Lifecycle** (builtin.py):
  - ``sleep``          — Suspend the agent for N seconds
  - ``check_credits``  — Report balances and survival tier
  - ``system_status``  — Report state, turn count and uptime
"""

from .base import BaseTool, ToolDefinition, ToolParameter, ToolRegistry, ToolResult
from .builtin import CheckCreditsTool, SleepTool, SystemStatusTool, create_builtin_tools

__all__ = [
    "BaseTool",
    "ToolDefinition",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "CheckCreditsTool",
    "SleepTool",
    "SystemStatusTool",
    "create_builtin_tools",
]
