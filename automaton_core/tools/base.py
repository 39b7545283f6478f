"""
TOOL_BASE
=========

Tool contract and the registry the agent loop dispatches through.

A tool is a ``BaseTool`` subclass with a ``definition`` (name, description,
parameters) and an ``execute(**arguments)`` method. Collaborators such as
the store, the coordination keys or the financial gate are passed to the
tool's constructor; ``execute`` only ever sees what the model sent.

Dispatch rules (``ToolRegistry.execute``)
-----------------------------------------
- Unknown name → failed result ``"Unknown tool: <name>"``.
- Missing required argument → failed result, tool not called.
- Arguments the tool does not accept, or an exception inside the tool →
  failed result.
- Slower than the timeout (30s default) → failed result. The single
  worker keeps running the abandoned call, so later calls queue behind it
  and still run one at a time, in order.
- Output longer than the cap (100KB default) is cut with a notice.

The registry never raises, so one bad tool call cannot end a turn.

Usage::

    registry = ToolRegistry()
    registry.register(SleepTool(keys))
    outcome = registry.execute("sleep", {"duration_seconds": 600})
    if not outcome.success:
        print(outcome.error)
"""

import inspect
import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# DEFINITIONS
# ============================================================================

@dataclass
class ToolParameter:
    """One named argument of a tool, as advertised to the model."""
    name: str
    type: str  # JSON Schema type: string, integer, number, boolean, object, array
    description: str
    required: bool = True
    enum: Optional[List[str]] = None

    def to_schema(self) -> Dict:
        schema: Dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = self.enum
        return schema


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: List[ToolParameter] = field(default_factory=list)

    @property
    def required_names(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]

    def to_schema(self) -> Dict:
        """OpenAI function-calling schema (also accepted by Ollama)."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {p.name: p.to_schema() for p in self.parameters},
                    "required": self.required_names,
                },
            },
        }


@dataclass
class ToolResult:
    """What a tool (or the registry, on its behalf) reports back."""
    success: bool
    output: str
    error: Optional[str] = None
    metadata: Optional[Dict] = None
    duration_ms: int = 0


class BaseTool(ABC):
    """Base class for everything the model can call."""

    @property
    @abstractmethod
    def definition(self) -> ToolDefinition:
        pass

    @abstractmethod
    def execute(self, **kwargs) -> ToolResult:
        pass

    @property
    def name(self) -> str:
        return self.definition.name

    def get_schema(self) -> Dict:
        return self.definition.to_schema()


# ============================================================================
# REGISTRY
# ============================================================================

class ToolRegistry:
    """Name → tool map with guarded execution."""

    DEFAULT_TIMEOUT = 30  # seconds
    MAX_OUTPUT_SIZE = 100_000  # characters

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT, max_output_size: int = MAX_OUTPUT_SIZE):
        self._tools: Dict[str, BaseTool] = {}
        self.default_timeout = default_timeout
        self.max_output_size = max_output_size
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tool")

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            logger.warning("[TOOLS] Replacing registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[str]:
        return list(self._tools)

    def get_schemas(self) -> List[Dict]:
        return [tool.get_schema() for tool in self._tools.values()]

    def get_tool_descriptions(self) -> str:
        """One ``- name: description`` line per tool, for the system prompt."""
        return "\n".join(f"- {name}: {tool.definition.description}" for name, tool in self._tools.items())

    def execute(self, tool_name: str, parameters: Dict, timeout: Optional[float] = None) -> ToolResult:
        """
        Run ``tool_name`` with ``parameters``.

        Returns:
            The tool's result with ``duration_ms`` filled in, or a failed
            result describing why the call did not happen or did not finish.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            return ToolResult(success=False, output="", error=f"Unknown tool: {tool_name}")

        missing = [name for name in tool.definition.required_names if name not in parameters]
        if missing:
            return ToolResult(
                success=False,
                output="",
                error=f"Invalid parameters for {tool_name}: missing required {', '.join(missing)}",
            )

        try:
            inspect.signature(tool.execute).bind(**parameters)
        except TypeError as e:
            return ToolResult(success=False, output="", error=f"Invalid parameters for {tool_name}: {e}")

        timeout = timeout or self.default_timeout
        started = time.monotonic()
        try:
            result = self._executor.submit(tool.execute, **parameters).result(timeout=timeout)
        except FuturesTimeoutError:
            result = ToolResult(
                success=False,
                output="",
                error=f"Tool '{tool_name}' timed out after {timeout} seconds",
            )
        except Exception as e:
            logger.debug("Tool %s raised", tool_name, exc_info=True)
            result = ToolResult(success=False, output="", error=f"Tool execution error: {e}")
        result.duration_ms = int((time.monotonic() - started) * 1000)

        if result.output and len(result.output) > self.max_output_size:
            original_size = len(result.output)
            result.output = (
                result.output[:self.max_output_size]
                + f"\n\n[TRUNCATED - output exceeded {self.max_output_size} characters]"
            )
            result.metadata = {**(result.metadata or {}), "truncated": True, "original_size": original_size}

        return result

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
