"""
OLLAMA_CLIENT
=============

``InferenceClient`` backed by a local Ollama server.

Uses the native ``/api/chat`` endpoint (not the OpenAI-compatible one) so
the context window can be raised with ``num_ctx``. The model is pulled on
first use if the server does not already have it.

Usage::

    client = OllamaClient(host="http://localhost:11434", model="qwen2:7b")
    response = client.chat([{"role": "user", "content": "hi"}])
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Set

import requests

from ..state.records import TokenUsage
from .base import InferenceClient, InferenceError, InferenceResponse, InferenceToolCall

logger = logging.getLogger(__name__)


DEFAULT_HOST = "http://localhost:11434"
DEFAULT_MODEL = "qwen2:7b"
DEFAULT_MAX_TOKENS = 4096
LOW_COMPUTE_MAX_TOKENS = 4096
CONTEXT_WINDOW = 8192

# <name>[:<tag>], e.g. qwen2:7b or library/llama3.1:8b
MODEL_NAME_RE = re.compile(r"^[a-zA-Z0-9._/-]+(?::[a-zA-Z0-9._-]+)?$")


class OllamaClient(InferenceClient):
    """Inference against a local Ollama server."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        low_compute_model: Optional[str] = None,
        timeout: float = 300.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            host: Ollama server base URL.
            model: Default model name.
            max_tokens: ``num_predict`` outside low-compute mode.
            low_compute_model: Model used in low-compute mode (defaults to ``model``).
            timeout: Per-request HTTP timeout in seconds.
            session: Optional ``requests.Session`` (injected in tests).
        """
        self.host = host.rstrip("/")
        self.default_model = model
        self.low_compute_model = low_compute_model or model
        self.configured_max_tokens = max_tokens
        self.timeout = timeout
        self.session = session or requests.Session()

        self.current_model = model
        self.max_tokens = max_tokens
        self.low_compute = False
        self._ready_models: Set[str] = set()

    # =========================================================================
    # MODEL MANAGEMENT
    # =========================================================================

    def ensure_model(self, model: str) -> None:
        """Make sure ``model`` is available locally, pulling it if needed."""
        if model in self._ready_models:
            return

        if not MODEL_NAME_RE.match(model):
            raise InferenceError(
                f'Invalid Ollama model name: "{model}". Model names may only contain '
                "alphanumerics, dots, dashes, slashes and an optional ':tag'."
            )

        if self._model_present(model):
            self._ready_models.add(model)
            return

        logger.info("[OLLAMA] Pulling model %s", model)
        try:
            resp = self.session.post(
                f"{self.host}/api/pull",
                json={"name": model, "stream": False},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise InferenceError(f'Failed to pull Ollama model "{model}": {e}') from e

        if not resp.ok:
            raise InferenceError(
                f'Failed to pull Ollama model "{model}": ({resp.status_code}) {resp.text}'
            )

        self._ready_models.add(model)
        logger.info("[OLLAMA] Model %s ready", model)

    def _model_present(self, model: str) -> bool:
        try:
            resp = self.session.get(f"{self.host}/api/tags", timeout=self.timeout)
        except requests.RequestException as e:
            # Fall through to a pull attempt
            logger.debug("Ollama tags lookup failed: %s", e)
            return False
        if not resp.ok:
            return False

        names = [m.get("name", "") for m in (resp.json().get("models") or [])]
        base = model.split(":")[0]
        return any(n == model or n.startswith(f"{base}:") for n in names)

    # =========================================================================
    # CHAT
    # =========================================================================

    def chat(self, messages: List[Dict], tools: Optional[List[Dict]] = None) -> InferenceResponse:
        model = self.current_model
        self.ensure_model(model)

        body: Dict[str, Any] = {
            "model": model,
            "messages": [_format_message(m) for m in messages],
            "stream": False,
            "options": {
                "num_ctx": CONTEXT_WINDOW,
                "num_predict": self.max_tokens,
            },
        }
        if tools:
            body["tools"] = tools

        try:
            resp = self.session.post(f"{self.host}/api/chat", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise InferenceError(f"Ollama request failed: {e}") from e

        if not resp.ok:
            raise InferenceError(f"Ollama inference error ({resp.status_code}): {resp.text}")

        try:
            data = resp.json()
        except ValueError as e:
            raise InferenceError(f"Ollama returned invalid JSON: {e}") from e

        return parse_chat_response(data, model)

    def set_low_compute_mode(self, enabled: bool) -> None:
        if enabled == self.low_compute:
            return
        self.low_compute = enabled
        if enabled:
            self.current_model = self.low_compute_model
            self.max_tokens = LOW_COMPUTE_MAX_TOKENS
        else:
            self.current_model = self.default_model
            self.max_tokens = self.configured_max_tokens
        logger.info(
            "[OLLAMA] Low-compute mode %s (model=%s, max_tokens=%d)",
            "on" if enabled else "off", self.current_model, self.max_tokens,
        )

    def get_default_model(self) -> str:
        return self.current_model


# =============================================================================
# WIRE HELPERS
# =============================================================================

def parse_chat_response(data: Dict, model: str) -> InferenceResponse:
    """Map an ``/api/chat`` response body to an ``InferenceResponse``."""
    message = data.get("message")
    if not message:
        raise InferenceError("No message returned from Ollama")

    prompt_tokens = data.get("prompt_eval_count") or 0
    completion_tokens = data.get("eval_count") or 0

    tool_calls = []
    for idx, tc in enumerate(message.get("tool_calls") or []):
        function = tc.get("function") or {}
        arguments = function.get("arguments", {})
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        tool_calls.append(InferenceToolCall(
            id=tc.get("id") or f"call_{idx}",
            name=function.get("name", ""),
            arguments=arguments,
        ))

    if data.get("done_reason"):
        finish_reason = data["done_reason"]
    else:
        finish_reason = "stop" if data.get("done") else "length"

    return InferenceResponse(
        content=message.get("content") or "",
        tool_calls=tool_calls,
        usage=TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
        finish_reason=finish_reason,
        model=data.get("model") or model,
        id=data.get("created_at") or "",
    )


def _format_message(msg: Dict) -> Dict:
    out = {"role": msg["role"], "content": msg.get("content") or ""}
    if msg.get("tool_calls"):
        # Ollama expects arguments as objects, not JSON text
        out["tool_calls"] = [_native_tool_call(tc) for tc in msg["tool_calls"]]
    if msg.get("tool_call_id"):
        out["tool_call_id"] = msg["tool_call_id"]
    if msg.get("name"):
        out["name"] = msg["name"]
    return out


def _native_tool_call(tc: Dict) -> Dict:
    function = dict(tc.get("function") or {})
    arguments = function.get("arguments")
    if isinstance(arguments, str):
        try:
            function["arguments"] = json.loads(arguments)
        except ValueError:
            function["arguments"] = {}
    return {"function": function}
