"""Client base class shared by patch-generating language-model integrations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMTransportError",
]


class LLMClientError(RuntimeError):
    """Base error raised for LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the endpoint returns a payload that is not a chat completion."""


class _ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: Optional[str] = None
    content: Optional[str] = None


class _ChatChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: Optional[_ChatMessage] = None
    text: Optional[str] = None


class _ChatCompletion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    choices: List[_ChatChoice] = []


@dataclass(slots=True)
class LLMRequest:
    """Chat request payload sent to an LLM."""

    prompt: str
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: float = 0.0
    max_tokens: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the chat completions API."""
        messages: list[Dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": self.prompt})

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "temperature": self.temperature,
            "messages": messages,
        }
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        return payload


class LLMClient:
    """High-level helper returning the first completion text, or ``None``."""

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def complete(self, request: LLMRequest) -> Optional[str]:
        """Invoke the model once; an empty completion is returned as ``None``."""
        payload = request.to_payload(self._model)
        raw = self._raw_invoke(payload)
        return self._extract_text(raw)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def _extract_text(raw_response: str) -> Optional[str]:
        text = (raw_response or "").strip()
        if not text:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as error:
            raise LLMResponseFormatError(f"Endpoint returned invalid JSON: {text[:200]}") from error
        try:
            completion = _ChatCompletion.model_validate(data)
        except ValidationError as error:
            raise LLMResponseFormatError(f"Endpoint returned an unexpected payload: {error}") from error
        if not completion.choices:
            return None
        choice = completion.choices[0]
        content = choice.message.content if choice.message else choice.text
        if not content or not content.strip():
            return None
        return content.strip()
