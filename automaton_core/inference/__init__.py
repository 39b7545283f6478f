"""
Inference providers for the automaton.
"""

from .base import (
    TERMINAL_FINISH_REASON,
    InferenceClient,
    InferenceError,
    InferenceResponse,
    InferenceToolCall,
)
from .ollama import OllamaClient

__all__ = [
    "TERMINAL_FINISH_REASON",
    "InferenceClient",
    "InferenceError",
    "InferenceResponse",
    "InferenceToolCall",
    "OllamaClient",
]
