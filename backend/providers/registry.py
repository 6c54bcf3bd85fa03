# Provider adapter table
# providers/registry.py
"""
Adapter table keyed by provider name.
Adding a provider means registering one adapter here; the orchestrator
never branches on provider names.
"""

from typing import Dict, List

from providers.base import ProviderAdapter
from providers.openai_adapter import OpenAIAdapter
from providers.anthropic_adapter import AnthropicAdapter
from providers.google_adapter import GoogleAdapter
from utils.errors import ErrorKind, InferenceError


PROVIDERS: Dict[str, ProviderAdapter] = {}


def register_adapter(adapter: ProviderAdapter) -> ProviderAdapter:
    PROVIDERS[adapter.name.lower()] = adapter
    return adapter


def get_adapter(name: str) -> ProviderAdapter:
    """Look up the adapter for an agent's framework tag"""
    adapter = PROVIDERS.get((name or "").strip().lower())
    if adapter is None:
        raise InferenceError(
            ErrorKind.UNSUPPORTED_PROVIDER,
            f"Unsupported AI provider: {name}"
        )
    return adapter


def supported_providers() -> List[str]:
    return sorted(PROVIDERS)


for _adapter in (OpenAIAdapter(), AnthropicAdapter(), GoogleAdapter()):
    register_adapter(_adapter)
