import logging
import os
from typing import Any, Dict, Optional, Tuple

from anthropic import Anthropic

from second_order.core.config import AppConfig
from second_order.prompts.analysis_prompts import MACRO_SYSTEMS_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


def extract_tool_input(response: Any, tool_name: str) -> Dict[str, Any]:
    """Return the input of the forced tool call named `tool_name`."""
    if getattr(response, "stop_reason", None) == "max_tokens":
        raise ValueError(f"Response truncated at max_tokens before {tool_name} completed")
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) != "tool_use":
            continue
        if getattr(block, "name", None) == tool_name:
            return block.input
    raise ValueError(f"Expected tool_use block for {tool_name}, got: {getattr(response, 'content', None)}")


class LLMHelperMixin:
    """Forced tool-use calls against the Anthropic Messages API.

    Hosts set `model_name` (or a DEFAULT_* class attribute) to override the
    AppConfig.claude defaults, and may inject a client via `_client`.
    """
    DEFAULT_MODEL: Optional[str] = None
    DEFAULT_MAX_TOKENS: Optional[int] = None
    DEFAULT_TEMPERATURE: Optional[float] = None

    def _system_prompt(self, addendum: Optional[str] = None) -> str:
        if addendum and addendum.strip():
            return f"{MACRO_SYSTEMS_SYSTEM_PROMPT}\n\n{addendum.strip()}"
        return MACRO_SYSTEMS_SYSTEM_PROMPT

    def _model_params(self) -> Tuple[str, int, float]:
        """(model, max_tokens, temperature): instance/class overrides first, then AppConfig."""
        defaults = AppConfig.claude
        model = getattr(self, "model_name", None) or self.DEFAULT_MODEL or defaults.model
        max_tokens = self.DEFAULT_MAX_TOKENS if self.DEFAULT_MAX_TOKENS is not None else defaults.max_tokens
        temperature = self.DEFAULT_TEMPERATURE if self.DEFAULT_TEMPERATURE is not None else defaults.temperature
        return model, max_tokens, temperature

    def _call_llm_structured(self, prompt: str, schema: Dict, system: Optional[str] = None) -> Dict:
        """Send `prompt` with `schema` as the only allowed tool and return its input."""
        model, max_tokens, temperature = self._model_params()
        tool_name = schema["name"]
        response = self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=self._system_prompt(system),
            messages=[{"role": "user", "content": prompt}],
            tools=[schema],
            tool_choice={"type": "tool", "name": tool_name},
        )
        self.last_raw_response = response
        usage = getattr(response, "usage", None)
        logger.debug(
            "Structured call complete",
            extra={"model": model, "tool": tool_name, "output_tokens": getattr(usage, "output_tokens", None)},
        )
        return extract_tool_input(response, tool_name)

    @property
    def client(self) -> Anthropic:
        """Injected client, or one built lazily from the configured API key."""
        if getattr(self, "_client", None) is None:
            api_key = getattr(self, "_api_key", None) or AppConfig.claude.api_key or os.getenv("ANTHROPIC_API_KEY")
            if not api_key:
                raise ValueError("ANTHROPIC_API_KEY is not configured and no client was injected")
            self._client = Anthropic(api_key=api_key, timeout=AppConfig.claude.timeout_seconds)
        return self._client


class ClaudeReasoningCapability(LLMHelperMixin):
    """Reasoning capability backed by Anthropic tool use.

    Implements the `invoke(prompt, schema, hint=None) -> dict` contract the
    reasoning orchestrator depends on. A corrective hint, when present, is
    appended to the user prompt so the model sees the prior violation.
    """

    def __init__(self, model_name: Optional[str] = None, api_key: Optional[str] = None, client: Optional[Anthropic] = None):
        self.model_name = model_name
        self._api_key = api_key
        self._client = client
        self.last_raw_response: Any = None

    @property
    def resolved_model_name(self) -> str:
        return self._model_params()[0]

    def for_model(self, model_name: str) -> "ClaudeReasoningCapability":
        """Copy bound to another model, sharing this instance's client."""
        return ClaudeReasoningCapability(model_name=model_name, api_key=self._api_key, client=self._client)

    def invoke(self, prompt: str, schema: Dict, hint: Optional[str] = None) -> Dict:
        if hint:
            prompt = f"{prompt}\n\n{hint}"
        logger.debug("Invoking reasoning capability", extra={"model": self.resolved_model_name, "has_hint": bool(hint)})
        return self._call_llm_structured(prompt, schema)
