# Services package
# services/__init__.py
"""Service layer for external integrations and core functionality"""

from .auth_service import AuthService
from .inference_orchestrator import InferenceOrchestrator, InferenceStream
from .provider_client import ProviderClient
from .store import IdentityStore, ConversationStore, UsageLedger, SupabaseStore, InMemoryStore
from .stream_normalizer import StreamNormalizer
from .usage_recorder import UsageRecorder, UsageSession

__all__ = [
    'AuthService',
    'InferenceOrchestrator', 'InferenceStream',
    'ProviderClient',
    'IdentityStore', 'ConversationStore', 'UsageLedger', 'SupabaseStore', 'InMemoryStore',
    'StreamNormalizer',
    'UsageRecorder', 'UsageSession'
]
