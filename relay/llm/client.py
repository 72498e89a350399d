"""Client factory for creating LLM client instances."""

import os
from typing import Dict, Optional, Tuple

from relay.llm.providers.base import LLMClient
from relay.llm.providers.ollama import OllamaClient


# Cache for client instances (singleton per provider/base_url/model)
_client_cache: Dict[Tuple[str, Optional[str], Optional[str]], LLMClient] = {}


def get_client(
    provider_name: Optional[str] = None,
    base_url: Optional[str] = None,
    model: Optional[str] = None,
    force_new: bool = False,
) -> LLMClient:
    """Get a client instance by provider name.

    Args:
        provider_name: Name of the provider. If None, uses RELAY_LLM_PROVIDER
                       or defaults to ollama.
        base_url: Override for the server URL
        model: Pin the client to a model instead of following config.OLLAMA_MODEL
        force_new: If True, creates a new instance instead of using a cached one.

    Raises:
        ValueError: If the provider name is not recognized.
    """
    if provider_name is None:
        provider_name = os.getenv("RELAY_LLM_PROVIDER", "ollama")

    provider_name = provider_name.lower().strip()
    key = (provider_name, base_url, model)

    if not force_new and key in _client_cache:
        return _client_cache[key]

    if provider_name == "ollama":
        client = OllamaClient(base_url=base_url, model=model)
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")

    _client_cache[key] = client
    return client


def clear_client_cache() -> None:
    _client_cache.clear()
