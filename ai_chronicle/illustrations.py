"""Illustration Gateway: optional scene images from the OpenAI Images API.

Illustrations are decoration. `illustrate` turns every failure into "no
image" so that a broken or unconfigured image service never holds up the
story.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ai_chronicle.config import Settings
from ai_chronicle.errors import ConfigurationError, IllustrationFailure
from ai_chronicle.llm import upstream_error_for
from ai_chronicle.models import IllustrationRequest

logger = logging.getLogger(__name__)


class Illustrator(Protocol):
    async def __call__(self, prompt: str) -> str | None: ...


class OpenAIImages:
    """Async client for POST {base_url}/v1/images/generations.

    Returns the hosted image URL, or a data: URI when the API answers with
    base64 content.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "dall-e-3",
        size: str = "1024x1024",
        base_url: str = "https://api.openai.com",
        timeout: float = 120.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._size = size
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenAIImages:
        return cls(
            api_key=settings.openai_api_key,
            model=settings.image_model,
            size=settings.image_size,
            base_url=settings.openai_base_url,
            timeout=settings.timeout,
        )

    def _parse_response(self, data: Any) -> str | None:
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list) or not items or not isinstance(items[0], dict):
            raise IllustrationFailure("Unexpected response format from OpenAI images")
        first = items[0]
        if isinstance(first.get("url"), str):
            return first["url"]
        if isinstance(first.get("b64_json"), str):
            return f"data:image/png;base64,{first['b64_json']}"
        return None

    async def __call__(self, prompt: str) -> str | None:
        if not self._api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")

        url = f"{self._base_url}/v1/images/generations"
        body = {"model": self._model, "prompt": prompt, "n": 1, "size": self._size}
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        logger.debug("image call model=%s prompt_len=%d", self._model, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise upstream_error_for(e.response.status_code, "OpenAI") from e
        except httpx.HTTPError as e:
            raise IllustrationFailure(f"OpenAI images request failed: {e}") from e

        return self._parse_response(resp.json())


async def illustrate(
    illustrator: Illustrator | None,
    request: IllustrationRequest | None,
    style: str = "",
) -> str | None:
    """Produce an image reference for `request`, or None.

    Never raises: any failure is logged and resolved to no image.
    """
    if illustrator is None or request is None:
        return None
    prompt = request.image_prompt
    if style:
        prompt = f"{prompt}. {style}"
    try:
        return await illustrator(prompt)
    except Exception as e:
        logger.warning("Illustration failed, continuing without image: %s", e)
        return None
