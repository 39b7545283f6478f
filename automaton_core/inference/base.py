"""
INFERENCE_BASE
==============

Contract between the agent loop and a language-model provider.

Messages are plain dicts in the OpenAI chat shape::

    {"role": "system" | "user" | "assistant" | "tool",
     "content": str,
     "tool_calls": [...],        # assistant only
     "tool_call_id": str}        # tool only

Tools are passed as OpenAI function schemas (see ``ToolRegistry.get_schemas``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..state.records import TokenUsage

# Finish reason that, with no tool calls, means "nothing more to do this turn".
TERMINAL_FINISH_REASON = "stop"


class InferenceError(RuntimeError):
    """The provider could not produce a response."""
    pass


@dataclass
class InferenceToolCall:
    """A tool call requested by the model. ``arguments`` is raw JSON text."""
    id: str
    name: str
    arguments: str = "{}"


@dataclass
class InferenceResponse:
    """Normalized provider response."""
    content: str
    tool_calls: List[InferenceToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = TERMINAL_FINISH_REASON
    model: str = ""
    id: str = ""

    @property
    def is_idle(self) -> bool:
        """No tool calls and a terminal finish reason."""
        return not self.tool_calls and self.finish_reason == TERMINAL_FINISH_REASON


class InferenceClient(ABC):
    """Provider-agnostic inference interface."""

    @abstractmethod
    def chat(self, messages: List[Dict], tools: Optional[List[Dict]] = None) -> InferenceResponse:
        """Run one completion over ``messages`` with ``tools`` available."""
        pass

    @abstractmethod
    def set_low_compute_mode(self, enabled: bool) -> None:
        """Switch to (or away from) the cheaper model configuration."""
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """Model currently used for calls without an explicit override."""
        pass
