# Anthropic messages adapter
# providers/anthropic_adapter.py
"""Adapter for Anthropic-style message streaming"""

from typing import Any, Dict

from models.provider import ProviderRequestParams, StreamChunk, EMPTY_CHUNK
from providers.base import ProviderAdapter, sse_data, load_object, dig
from utils.config import settings


class AnthropicAdapter(ProviderAdapter):
    """
    System prompt travels beside ``messages``, not inside it.

    Roles are assumed to be interleaved by the caller; the adapter only
    re-tags every non-system role to ``user``/``assistant``.
    """

    name = "anthropic"
    endpoint = "https://api.anthropic.com/v1/messages"
    default_model = "claude-sonnet-4-20250514"
    auth_header = "x-api-key"
    auth_prefix = ""
    extra_headers = {"anthropic-version": settings.anthropic_version}

    def build_request(self, params: ProviderRequestParams) -> Dict[str, Any]:
        messages = [
            {
                "role": "assistant" if m.role == "assistant" else "user",
                "content": m.content,
            }
            for m in params.messages
            if m.role != "system"
        ]
        return {
            "model": params.model,
            "system": params.system_prompt,
            "messages": messages,
            "stream": True,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
        }

    def _parse_line(self, line: str) -> StreamChunk:
        # "event:" lines only repeat the type carried in the data payload
        data = sse_data(line)
        if data is None:
            return EMPTY_CHUNK

        parsed = load_object(data)
        if parsed is None:
            return EMPTY_CHUNK

        event_type = parsed.get("type")
        if event_type == "content_block_delta":
            return StreamChunk(dig(parsed, "delta", "text") or "", False)
        if event_type == "message_stop":
            return StreamChunk("", True)
        return EMPTY_CHUNK
