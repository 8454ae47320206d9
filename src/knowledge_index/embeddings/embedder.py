"""
OpenAI-Compatible Embedding Client

Embedding provider for the OpenAI embeddings API (or any compatible
provider). It is responsible for:

- Batching of text inputs
- Network and transport error isolation
- Strict response validation, including vector dimensionality

The class is stateless and safe to reuse across jobs.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..config import EmbeddingSettings
from ..core.errors import EmbeddingError
from .base import EmbeddingProvider

logger = logging.getLogger("kb.embedder")

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"


class OpenAIEmbedder(EmbeddingProvider):
    """
    Asynchronous embedding generator for batches of text.

    This class performs no caching; the caller owns persistence of vectors.
    """

    def __init__(
        self,
        config: EmbeddingSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize an OpenAIEmbedder.

        Parameters
        ----------
        config : EmbeddingSettings
            Model, dimensions, base URL, API key, batch size and timeout.

        transport : Optional[httpx.AsyncBaseTransport]
            Optional transport override (used by tests).
        """
        self._config = config
        self._transport = transport
        base = (config.base_url or DEFAULT_OPENAI_URL).rstrip("/")
        self.url = base if base.endswith("/embeddings") else f"{base}/embeddings"

    @property
    def model_id(self) -> str:
        return self._config.model

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    @property
    def provider_name(self) -> str:
        return "OpenAI"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Parameters
        ----------
        texts : Sequence[str]
            Input text strings. Requests are split by the configured batch size.

        Returns
        -------
        List[List[float]]
            One embedding per input, in input order.

        Raises
        ------
        EmbeddingError
            If any batch fails or the response is malformed.
        """
        if not texts:
            return []

        all_embeddings: List[List[float]] = []
        headers = {}
        if self._config.api_key is not None:
            headers["Authorization"] = f"Bearer {self._config.api_key.get_secret_value()}"

        batch_size = self._config.batch_size

        async with httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        ) as client:
            for start in range(0, len(texts), batch_size):
                batch = list(texts[start : start + batch_size])
                payload = {
                    "model": self._config.model,
                    "input": batch,
                }

                try:
                    response = await client.post(
                        self.url,
                        json=payload,
                        headers=headers,
                    )
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.error(
                        "Embedding request failed (%s): batch size=%d, error=%s",
                        type(exc).__name__,
                        len(batch),
                        str(exc),
                    )
                    raise EmbeddingError(
                        f"Embedding generation failed: {type(exc).__name__}"
                    ) from exc

                embeddings = self._extract_embeddings(response.json())
                if len(embeddings) != len(batch):
                    raise EmbeddingError(
                        f"Expected {len(batch)} embeddings, got {len(embeddings)}"
                    )
                all_embeddings.extend(embeddings)

        self.check_dimensions(all_embeddings)
        return all_embeddings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_embeddings(data: dict) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Records are reordered by ``index`` when present.

        Raises
        ------
        EmbeddingError
            If the API returns unexpected structure.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise EmbeddingError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingError("'data' field must be a list.")

        if all(isinstance(r, dict) and isinstance(r.get("index"), int) for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingError(
                    f"Malformed embedding record at index {index}"
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingError(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
