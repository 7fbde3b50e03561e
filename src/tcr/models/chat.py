"""Production chat-completions client used to request unified diffs."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMTransportError

__all__ = ["ChatCompletionsClient", "DEFAULT_BASE_URL", "resolve_api_key"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/chat/completions"

Transport = Callable[[Dict[str, Any]], str]


def resolve_api_key(configured: Optional[str]) -> Optional[str]:
    """Return the configured key, falling back to ``TCR_API_KEY`` then ``OPENAI_API_KEY``."""
    for candidate in (configured, os.getenv("TCR_API_KEY"), os.getenv("OPENAI_API_KEY")):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


class ChatCompletionsClient(LLMClient):
    """Thin adapter around an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "gpt-4o-mini",
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(model=model)
        self._api_key = resolve_api_key(api_key)
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request over the configured transport."""
        try:
            return self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport that targets the chat completions API."""
        import urllib.error
        import urllib.request

        LOGGER.debug("POST %s model=%s", self._base_url, payload.get("model"))
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Chat completion request timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"Chat completion failed ({error.code}): {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach chat endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")
