# Provider-facing data models
# models/provider.py
"""Canonical request shape consumed by every provider adapter"""

from pydantic import BaseModel, Field
from typing import List, NamedTuple


class ChatMessage(BaseModel):
    """Role/content pair in the flattened two-role chat format"""
    role: str
    content: str


class ProviderRequestParams(BaseModel):
    """
    Provider-neutral request. Each adapter is solely responsible for
    turning this into its wire format.
    """
    model: str
    system_prompt: str
    messages: List[ChatMessage] = Field(default_factory=list)
    max_tokens: int
    temperature: float


class StreamChunk(NamedTuple):
    """Result of decoding one line of a provider's SSE body"""
    content: str = ""
    done: bool = False


EMPTY_CHUNK = StreamChunk("", False)
