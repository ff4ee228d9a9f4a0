"""Embedding provider adapters.

The engine only needs ``embed(url) -> vector``. Providers may be plain
callables or objects with an ``embed`` method, sync or async. A sync provider
runs in a worker thread so a slow download never blocks the event loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import time
from typing import Any, Awaitable, Callable, Optional, Protocol, Union
from urllib.parse import quote

import requests

from ..similarity import coerce_vector

logger = logging.getLogger(__name__)

DEFAULT_CLIP_MODEL = "laion/CLIP-ViT-B-32-laion2B-s34B-b79K"
DEFAULT_HF_BASE_URL = "https://api-inference.huggingface.co"

EmbedCallable = Callable[[str], Union[Any, Awaitable[Any]]]


class EmbeddingProviderError(Exception):
    """Raised by a provider when an embedding cannot be produced."""
    pass


class EmbeddingProvider(Protocol):
    def embed(self, url: str) -> Any:
        ...


def as_embed_callable(provider: Any) -> Optional[EmbedCallable]:
    """Normalize a provider object or function into a single callable."""
    if provider is None:
        return None
    embed = getattr(provider, "embed", None)
    if callable(embed):
        return embed
    if callable(provider):
        return provider
    raise TypeError(f"Embedding provider must be callable or define embed(url), got {type(provider).__name__}")


async def call_embed(embed: EmbedCallable, url: str) -> Any:
    """Call a sync or async embed function without blocking the loop."""
    if inspect.iscoroutinefunction(embed):
        return await embed(url)
    result = await asyncio.to_thread(embed, url)
    if inspect.isawaitable(result):
        return await result
    return result


class HuggingFaceImageEmbedder:
    """Image embeddings from a hosted CLIP feature-extraction endpoint.

    Downloads the photo from its stable URL and posts the bytes to the
    inference API. Returns None when no API token is configured so callers
    fall back to degraded mode instead of failing.

    Calls run from worker threads. Without an injected session each request
    goes through the module-level `requests` functions; an injected session
    must be safe to share across threads.
    """

    def __init__(
        self,
        api_token: Optional[str] = None,
        model: str = DEFAULT_CLIP_MODEL,
        base_url: str = DEFAULT_HF_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        retry_delay_seconds: float = 0.6,
    ):
        self.api_token = api_token if api_token is not None else os.getenv("HF_API_TOKEN", "")
        self.model = os.getenv("CLIP_MODEL", model) if model == DEFAULT_CLIP_MODEL else model
        self.base_url = base_url.rstrip("/")
        self.session = session
        self._http = session if session is not None else requests
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, int(max_retries))
        self.retry_delay_seconds = max(0.0, retry_delay_seconds)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/pipeline/feature-extraction/{quote(self.model, safe='')}"

    def embed(self, url: str) -> Optional[list]:
        if not self.api_token:
            return None

        image = self._http.get(url, timeout=self.timeout_seconds, allow_redirects=True)
        if not image.ok:
            raise EmbeddingProviderError(f"image fetch {image.status_code} for {url}")

        payload = self._post_image(image.content)
        vector = coerce_vector(payload)
        if vector is None:
            raise EmbeddingProviderError(f"Unrecognized embedding payload for {url}")
        return vector.tolist()

    def _post_image(self, body: bytes) -> Any:
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/octet-stream",
        }
        attempt = 0
        while True:
            response = self._http.post(
                self.endpoint,
                params={"wait_for_model": "true"},
                headers=headers,
                data=body,
                timeout=self.timeout_seconds,
            )
            if response.status_code == 503 and attempt < self.max_retries:
                attempt += 1
                logger.info(f"Embedding model loading (503), retry {attempt}/{self.max_retries}")
                time.sleep(self.retry_delay_seconds)
                continue
            if not response.ok:
                raise EmbeddingProviderError(f"HF {response.status_code}: {response.text or response.reason}")
            try:
                return response.json()
            except ValueError:
                return None
