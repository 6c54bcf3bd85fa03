# Models package
# models/__init__.py
"""Data models for API contracts and internal communication"""

from .agents import AgentConfig, Swarm, ContextBlock, ConversationMessage, HumanMode
from .provider import ChatMessage, ProviderRequestParams, StreamChunk
from .usage import UsageRecord, UsageStatus
from .requests import AgentRespondRequest
from .responses import ErrorResponse, HealthStatus, ProviderCatalog

__all__ = [
    'AgentConfig', 'Swarm', 'ContextBlock', 'ConversationMessage', 'HumanMode',
    'ChatMessage', 'ProviderRequestParams', 'StreamChunk',
    'UsageRecord', 'UsageStatus',
    'AgentRespondRequest',
    'ErrorResponse', 'HealthStatus', 'ProviderCatalog'
]
