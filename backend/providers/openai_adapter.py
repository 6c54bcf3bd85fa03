# OpenAI chat completions adapter
# providers/openai_adapter.py
"""Adapter for OpenAI-style chat completion streaming"""

from typing import Any, Dict

from models.provider import ProviderRequestParams, StreamChunk, EMPTY_CHUNK
from providers.base import ProviderAdapter, sse_data, load_object, dig


class OpenAIAdapter(ProviderAdapter):
    """
    Flat ``messages`` array with a leading system entry.
    Stream ends with a literal ``data: [DONE]`` line.
    """

    name = "openai"
    endpoint = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-4o"
    auth_header = "Authorization"
    auth_prefix = "Bearer "

    def build_request(self, params: ProviderRequestParams) -> Dict[str, Any]:
        return {
            "model": params.model,
            "messages": [
                {"role": "system", "content": params.system_prompt},
                *[{"role": m.role, "content": m.content} for m in params.messages],
            ],
            "stream": True,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
        }

    def _parse_line(self, line: str) -> StreamChunk:
        data = sse_data(line)
        if data is None:
            return EMPTY_CHUNK
        if data.strip() == "[DONE]":
            return StreamChunk("", True)

        parsed = load_object(data)
        if parsed is None:
            return EMPTY_CHUNK

        content = dig(parsed, "choices", 0, "delta", "content") or ""
        return StreamChunk(content, False)
