"""
Image generation collaborator.

Given a prompt, returns a URL the delivery transport can send by reference.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from chime.core.errors import ConfigError, LLMError

logger = logging.getLogger(__name__)


class ImageGenerator(ABC):
    """Turns a text prompt into an image reference."""

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """
        Generate one image.

        Returns:
            A URL (or other media reference) for the image.

        Raises:
            LLMError: On API failures or an empty result
        """
        ...

    async def close(self) -> None:
        pass


class OpenAIImageGenerator(ImageGenerator):
    """
    Image generation via an OpenAI-compatible /images/generations endpoint.

    Usage:
        images = OpenAIImageGenerator(api_key="sk-...")
        url = await images.generate("a lighthouse at dusk")
    """

    def __init__(
        self,
        api_key: str,
        model: str = "dall-e-2",
        size: str = "512x512",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigError("An API key is required for image generation")
        self._api_key = api_key
        self._model = model
        self._size = size
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def generate(self, prompt: str) -> str:
        client = await self._get_client()
        try:
            response = await client.post(
                "/images/generations",
                json={"model": self._model, "prompt": prompt, "n": 1, "size": self._size},
            )
        except httpx.HTTPError as e:
            raise LLMError(
                f"Image generation request failed: {e}",
                provider="openai",
                model=self._model,
                retryable=True,
            ) from e

        if response.status_code != 200:
            raise LLMError(
                f"Image API error ({response.status_code}): {response.text}",
                provider="openai",
                model=self._model,
                retryable=response.status_code >= 500,
            )

        data = response.json().get("data") or []
        url = data[0].get("url", "") if data else ""
        if not url:
            raise LLMError("Image API returned no image", provider="openai", model=self._model)
        logger.debug(f"Generated image for prompt {prompt[:60]!r}")
        return url

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
