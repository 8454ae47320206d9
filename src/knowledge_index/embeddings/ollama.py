"""
Ollama Embedding Client

Ollama's ``/api/embeddings`` endpoint embeds a single prompt per request, so a
batch is sent as concurrent requests, one per text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

import httpx

from ..config import EmbeddingSettings
from ..core.errors import EmbeddingError
from .base import EmbeddingProvider

logger = logging.getLogger("kb.embedder.ollama")

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class OllamaEmbedder(EmbeddingProvider):
    def __init__(
        self,
        config: EmbeddingSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self.base_url = (config.base_url or DEFAULT_OLLAMA_URL).rstrip("/")

    @property
    def model_id(self) -> str:
        return self._config.model

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    @property
    def provider_name(self) -> str:
        return "Ollama"

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []

        results: List[List[float]] = []
        batch_size = self._config.batch_size
        total_batches = (len(texts) + batch_size - 1) // batch_size

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        ) as client:
            for start in range(0, len(texts), batch_size):
                batch = texts[start : start + batch_size]
                vectors = await asyncio.gather(
                    *(self._embed_one(client, text) for text in batch)
                )
                results.extend(vectors)

                logger.debug(
                    "Embedded batch %d/%d (%d texts)",
                    start // batch_size + 1,
                    total_batches,
                    len(vectors),
                )

        self.check_dimensions(results)
        return results

    async def _embed_one(self, client: httpx.AsyncClient, text: str) -> List[float]:
        if not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            response = await client.post(
                "/api/embeddings",
                json={"model": self._config.model, "prompt": text},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                "Ollama request failed (%s) at %s: %s",
                type(exc).__name__,
                self.base_url,
                str(exc),
            )
            raise EmbeddingError(
                f"Failed to reach Ollama at {self.base_url}; ensure model "
                f"'{self._config.model}' is available"
            ) from exc

        embedding = response.json().get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingError("Ollama returned empty embedding")
        return [float(x) for x in embedding]
