# Google Gemini adapter
# providers/google_adapter.py
"""Adapter for Google-style generateContent streaming"""

from typing import Any, Dict
from urllib.parse import quote

from models.provider import ProviderRequestParams, StreamChunk, EMPTY_CHUNK
from providers.base import ProviderAdapter, sse_data, load_object, dig


class GoogleAdapter(ProviderAdapter):
    """
    Prompt nests under ``contents``/``systemInstruction`` and the model id
    is part of the URL path. ``assistant`` turns are renamed ``model``.
    """

    name = "google"
    endpoint = "https://generativelanguage.googleapis.com/v1beta/models"
    default_model = "gemini-1.5-pro"
    auth_header = "x-goog-api-key"
    auth_prefix = ""

    def request_url(self, params: ProviderRequestParams) -> str:
        model = quote(params.model, safe="-._")
        return f"{self.endpoint}/{model}:streamGenerateContent?alt=sse"

    def build_request(self, params: ProviderRequestParams) -> Dict[str, Any]:
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in params.messages
        ]
        return {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": params.system_prompt}]},
            "generationConfig": {
                "maxOutputTokens": params.max_tokens,
                "temperature": params.temperature,
            },
        }

    def _parse_line(self, line: str) -> StreamChunk:
        data = sse_data(line)
        if data is None:
            return EMPTY_CHUNK

        parsed = load_object(data)
        if parsed is None:
            return EMPTY_CHUNK

        content = dig(parsed, "candidates", 0, "content", "parts", 0, "text") or ""
        done = dig(parsed, "candidates", 0, "finishReason") == "STOP"
        return StreamChunk(content, done)
