"""
Embedding provider contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

from ..core.errors import EmbeddingDimensionError


class EmbeddingProvider(ABC):
    """
    Text to fixed-length vector, batchable.

    Implementations report the model id written next to every stored vector
    and the dimensionality the vector index was created for.
    """

    @property
    @abstractmethod
    def model_id(self) -> str: ...

    @property
    @abstractmethod
    def dimensions(self) -> int: ...

    @property
    def provider_name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed ``texts`` and return one vector per input, in input order.

        Raises
        ------
        EmbeddingError
            If any request fails or a response is malformed.
        EmbeddingDimensionError
            If a returned vector does not have ``dimensions`` components.
        """

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    def check_dimensions(self, vectors: Sequence[Sequence[float]]) -> None:
        for index, vector in enumerate(vectors):
            if len(vector) != self.dimensions:
                raise EmbeddingDimensionError(
                    f"Embedding {index} from model '{self.model_id}' has "
                    f"{len(vector)} dimensions, expected {self.dimensions}"
                )
