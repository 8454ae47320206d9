"""
Embedding Provider Registry

Maps provider names (``EmbeddingSettings.provider``) to factories, and caches
one provider instance per distinct embedding configuration.

Thread Safety
-------------
- The registry is protected by an RLock
- Providers themselves hold no mutable state
"""

from __future__ import annotations

from threading import RLock
from typing import Callable, Dict, List

from ..config import EmbeddingSettings
from ..core.errors import UnknownStrategyError
from .base import EmbeddingProvider
from .embedder import OpenAIEmbedder
from .ollama import OllamaEmbedder

ProviderFactory = Callable[[EmbeddingSettings], EmbeddingProvider]


# ---------------------------------------------------------------------
# Global Provider Registry
# ---------------------------------------------------------------------

_factories: Dict[str, ProviderFactory] = {
    "openai": OpenAIEmbedder,
    "ollama": OllamaEmbedder,
}
_instances: Dict[EmbeddingSettings, EmbeddingProvider] = {}
_registry_lock = RLock()


def register_provider(name: str, factory: ProviderFactory) -> None:
    """
    Register (or replace) a provider factory under a case-insensitive name.
    """
    with _registry_lock:
        _factories[name.lower()] = factory
        for key in [k for k in _instances if k.provider.lower() == name.lower()]:
            del _instances[key]


def get_provider(config: EmbeddingSettings) -> EmbeddingProvider:
    """
    Get or create the provider for an embedding configuration.

    Parameters
    ----------
    config : EmbeddingSettings
        Frozen settings section; equal sections share one instance.

    Returns
    -------
    EmbeddingProvider

    Raises
    ------
    UnknownStrategyError
        If ``config.provider`` is not registered.
    """
    with _registry_lock:
        provider = _instances.get(config)
        if provider is not None:
            return provider

        factory = _factories.get(config.provider.lower())
        if factory is None:
            raise UnknownStrategyError(f"Unknown embedding provider: {config.provider}")

        provider = factory(config)
        _instances[config] = provider
        return provider


def available_providers() -> List[str]:
    with _registry_lock:
        return sorted(_factories)
