"""Model Gateway: HTTP connection to the hosted storyteller model.

The engine hands the caller a ModelRequest; any callable matching the
protocol can complete it:

    async def __call__(self, request: ModelRequest) -> str: ...

The returned text is expected, not guaranteed, to be a narrative JSON object.
The engine copes with anything else.

Two implementations are provided:

    AnthropicLLM - real HTTP client for the Anthropic Messages API.
    EchoLLM      - returns the prompt back unchanged. Useful for smoke-testing
                   a session without a network; the engine shows the echo as
                   plain narrative text.

Tests use StubLLM (defined in the test helpers) instead.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ai_chronicle.config import Settings
from ai_chronicle.errors import (
    ConfigurationError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamServerError,
)
from ai_chronicle.models import ModelRequest

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


# ---------------------------------------------------------------------------
# Protocol - every gateway implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, request: ModelRequest) -> str: ...


# ---------------------------------------------------------------------------
# AnthropicLLM - connects to the Messages API
# ---------------------------------------------------------------------------

def upstream_error_for(status: int, vendor: str) -> UpstreamError:
    """Map an HTTP status from a vendor API onto the error taxonomy."""
    if status in (401, 403):
        return UpstreamAuthError(f"{vendor} rejected the API key (HTTP {status})")
    if status == 429:
        return UpstreamRateLimited(f"{vendor} rate limit reached (HTTP {status})")
    if status >= 500:
        return UpstreamServerError(f"{vendor} returned HTTP {status}")
    return UpstreamError(f"{vendor} refused the request (HTTP {status})")


class AnthropicLLM:
    """Async client for POST {base_url}/v1/messages.

    Request:  {"model", "max_tokens", "temperature", "system",
               "messages": [{"role": "user", "content": prompt}]}
    Response: {"content": [{"type": "text", "text": "..."}, ...]}

    Args:
        api_key:     Anthropic API key. Calls fail with ConfigurationError
                     when it is empty.
        model:       Model identifier.
        max_tokens:  Completion budget.
        temperature: Sampling temperature.
        base_url:    API root, e.g. "https://api.anthropic.com".
        timeout:     HTTP timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 2000,
        temperature: float = 0.9,
        base_url: str = "https://api.anthropic.com",
        timeout: float = 120.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> AnthropicLLM:
        return cls(
            api_key=settings.anthropic_api_key,
            model=settings.model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            base_url=settings.anthropic_base_url,
            timeout=settings.timeout,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _build_body(self, request: ModelRequest) -> dict[str, Any]:
        return {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "system": request.system,
            "messages": [{"role": "user", "content": request.prompt}],
        }

    def _parse_response(self, data: Any) -> str:
        """Join the text blocks of a Messages API response."""
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise UpstreamError("Unexpected response format from Anthropic")
        texts = [
            block["text"] for block in blocks
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        ]
        if not texts:
            raise UpstreamError("Anthropic response contained no text")
        return "".join(texts)

    async def __call__(self, request: ModelRequest) -> str:
        if not self._api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured")

        url = f"{self._base_url}/v1/messages"
        logger.debug(
            "llm call intent=%s turn=%d model=%s prompt_len=%d",
            request.intent, request.turn, self._model, len(request.prompt),
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=self._build_body(request), headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise UpstreamServerError(f"Cannot connect to Anthropic at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise upstream_error_for(e.response.status_code, "Anthropic") from e
        except httpx.TimeoutException as e:
            raise UpstreamServerError(f"Anthropic timed out after {self._timeout}s") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("Anthropic returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response intent=%s len=%d", request.intent, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM - returns the prompt unchanged; useful for offline smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the prompt text as-is. No network calls.

    The echo is not JSON, so every turn goes through the plain-text fallback
    and auto-continues. Enough to check the host wiring end to end.
    """

    async def __call__(self, request: ModelRequest) -> str:
        logger.debug("EchoLLM intent=%s prompt_len=%d", request.intent, len(request.prompt))
        return request.prompt
