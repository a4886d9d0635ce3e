"""
Embedding client for memory narratives.

Talks to any OpenAI-compatible /embeddings endpoint. A disabled flag, a
missing key, a timeout, a 5xx after retries or a malformed vector all
surface as EmbeddingUnavailable so callers can fall back to keyword scoring.
"""

import asyncio
import logging
import math
import random
import time
from typing import Optional

import httpx

from ..core.config import get_settings
from ..core.errors import EmbeddingUnavailable
from ..core.flags import get_flags

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRIES = 2
BASE_DELAY = 0.5
MAX_DELAY = 8.0


def validate_vector(vector, dimensions: Optional[int] = None) -> list[float]:
    """
    Coerce a provider payload into a list of finite floats.
    Raises ValueError on wrong length or non-numeric entries.
    """
    if not isinstance(vector, (list, tuple)) or not vector:
        raise ValueError("embedding is not a non-empty list")
    if dimensions is not None and len(vector) != dimensions:
        raise ValueError(f"expected {dimensions} dimensions, got {len(vector)}")

    values = []
    for v in vector:
        # bool is an int subclass; a vector of True/False is not an embedding
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError(f"non-numeric embedding value: {v!r}")
        f = float(v)
        if not math.isfinite(f):
            raise ValueError("non-finite embedding value")
        values.append(f)
    return values


class EmbeddingClient:
    """Maps text to a fixed-length vector via an HTTP embedding provider."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.embedding_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.resolved_embedding_api_key
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.timeout = timeout if timeout is not None else settings.embedding_timeout
        self._client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=5),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _post_with_retry(self, payload: dict) -> httpx.Response:
        """POST with exponential backoff + jitter on 429/5xx and timeouts."""
        url = f"{self.base_url}/embeddings"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        client = self._get_client()
        last_exc: Optional[Exception] = None

        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await client.post(url, json=payload, headers=headers, timeout=self.timeout)
            except httpx.TimeoutException as e:
                last_exc = e
                logger.warning("Embedding timeout (attempt %d/%d)", attempt + 1, MAX_RETRIES + 1)
            except httpx.TransportError as e:
                last_exc = e
                logger.warning("Embedding transport error (attempt %d/%d): %s",
                               attempt + 1, MAX_RETRIES + 1, e)
            else:
                if resp.status_code not in RETRYABLE_STATUS:
                    if resp.status_code >= 400:
                        logger.error("Embedding API error %d: %s", resp.status_code, resp.text[:500])
                        raise EmbeddingUnavailable(f"Embedding API returned {resp.status_code}")
                    return resp
                last_exc = httpx.HTTPStatusError(
                    f"{resp.status_code}", request=resp.request, response=resp
                )
                logger.warning("Embedding %d (attempt %d/%d)",
                               resp.status_code, attempt + 1, MAX_RETRIES + 1)

            if attempt < MAX_RETRIES:
                delay = min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 0.5))
                await asyncio.sleep(delay)

        raise EmbeddingUnavailable(f"Embedding provider failed after retries: {last_exc}")

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for text."""
        if not get_flags().use_embeddings:
            raise EmbeddingUnavailable("Embeddings disabled (FF_USE_EMBEDDINGS=false)")
        if not self.api_key:
            raise EmbeddingUnavailable("No embedding API key configured")
        if not text or not text.strip():
            raise EmbeddingUnavailable("Nothing to embed")

        start = time.monotonic()
        resp = await self._post_with_retry({"input": text, "model": self.model})

        try:
            data = resp.json()
            vector = validate_vector(data["data"][0]["embedding"], self.dimensions)
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("Malformed embedding response: %s", e)
            raise EmbeddingUnavailable(f"Malformed embedding response: {e}") from e

        logger.info("Embedded %d chars in %dms | model=%s",
                    len(text), int((time.monotonic() - start) * 1000), self.model)
        return vector


# ── Singleton ────────────────────────────────────────────────────────

_embedding_client: Optional[EmbeddingClient] = None


def get_embedding_client() -> EmbeddingClient:
    global _embedding_client
    if _embedding_client is None:
        _embedding_client = EmbeddingClient()
    return _embedding_client


def set_embedding_client(client: Optional[EmbeddingClient]) -> None:
    """Swap the process-wide client (tests, alternative providers)."""
    global _embedding_client
    _embedding_client = client


async def close_client() -> None:
    """Close the shared HTTP client. Call on app shutdown."""
    if _embedding_client is not None:
        await _embedding_client.close()
