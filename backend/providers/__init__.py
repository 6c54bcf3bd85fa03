# Providers package
# providers/__init__.py
"""Upstream inference API adapters"""

from .base import ProviderAdapter
from .openai_adapter import OpenAIAdapter
from .anthropic_adapter import AnthropicAdapter
from .google_adapter import GoogleAdapter
from .registry import PROVIDERS, get_adapter, register_adapter, supported_providers

__all__ = [
    'ProviderAdapter',
    'OpenAIAdapter', 'AnthropicAdapter', 'GoogleAdapter',
    'PROVIDERS', 'get_adapter', 'register_adapter', 'supported_providers'
]
