"""
Chunking strategy registry.

Strategies are resolved by name at call time. The semantic strategy needs an
embedding provider, so every factory receives the provider of the current run.
"""

from __future__ import annotations

from threading import RLock
from typing import Callable, Dict, List

from ...core.errors import UnknownStrategyError
from ...embeddings.base import EmbeddingProvider
from .base import ChunkingStrategy
from .fixed_size import FixedSizeChunker
from .recursive import RecursiveChunker
from .semantic import SemanticChunker

ChunkerFactory = Callable[[EmbeddingProvider], ChunkingStrategy]


class ChunkerRegistry:
    def __init__(self) -> None:
        self._lock = RLock()
        self._factories: Dict[str, ChunkerFactory] = {}
        self.register("FixedSize", lambda provider: FixedSizeChunker())
        self.register("Recursive", lambda provider: RecursiveChunker())
        self.register("Semantic", SemanticChunker)

    def register(self, name: str, factory: ChunkerFactory) -> None:
        with self._lock:
            self._factories[name.lower()] = factory

    def resolve(self, name: str, provider: EmbeddingProvider) -> ChunkingStrategy:
        """
        Raises
        ------
        UnknownStrategyError
            If no strategy is registered under ``name``.
        """
        with self._lock:
            factory = self._factories.get(name.lower())
        if factory is None:
            raise UnknownStrategyError(f"Unknown chunking strategy: {name}")
        return factory(provider)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._factories)
