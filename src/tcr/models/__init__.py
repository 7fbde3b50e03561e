"""Convenience exports for TCR language-model client implementations."""

from .chat import ChatCompletionsClient, resolve_api_key
from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMTransportError,
)

__all__ = [
    "ChatCompletionsClient",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMTransportError",
    "resolve_api_key",
]
