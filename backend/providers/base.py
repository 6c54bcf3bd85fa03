# Base provider adapter interface
# providers/base.py
"""
Base adapter establishing the contract for every upstream inference API.

An adapter knows its endpoint, how its secret travels (header table, not
caller branching), how to shape the request body, and how to decode one
line of its streaming protocol. Adapters are stateless and shared across
requests.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional
import structlog

from models.provider import ProviderRequestParams, StreamChunk, EMPTY_CHUNK
from utils.errors import ErrorKind, InferenceError
from utils.security import truncate


logger = structlog.get_logger()


def sse_data(line: str) -> Optional[str]:
    """Return the payload of an SSE ``data:`` line, or None for any other field"""
    if not line.startswith("data:"):
        return None
    data = line[5:]
    if data.startswith(" "):
        data = data[1:]
    return data


def load_object(data: str) -> Optional[Dict[str, Any]]:
    """Decode a JSON object; anything else is None"""
    try:
        parsed = json.loads(data)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def dig(value: Any, *path: Any) -> Any:
    """Walk nested dicts/lists, returning None on the first missing step"""
    for key in path:
        if isinstance(key, int):
            if not isinstance(value, list) or len(value) <= key:
                return None
        elif not isinstance(value, dict):
            return None
        value = value[key] if isinstance(key, int) else value.get(key)
        if value is None:
            return None
    return value


class ProviderAdapter(ABC):
    """
    Foundation for all provider adapters.
    Subclasses fill in the class-level table and the two wire-format hooks.
    """

    name: str = ""
    endpoint: str = ""
    default_model: str = ""

    # Secret header table: header name, value prefix, static extras
    auth_header: str = "Authorization"
    auth_prefix: str = ""
    extra_headers: Dict[str, str] = {}

    def __init__(self):
        self.logger = logger.bind(provider=self.name)

    @abstractmethod
    def build_request(self, params: ProviderRequestParams) -> Dict[str, Any]:
        """Pure transformation into the provider's JSON payload"""

    @abstractmethod
    def _parse_line(self, line: str) -> StreamChunk:
        """Decode one complete SSE line; may raise on malformed input"""

    def request_url(self, params: ProviderRequestParams) -> str:
        return self.endpoint

    def authenticate(self, api_key: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            self.auth_header: f"{self.auth_prefix}{api_key}",
        }
        headers.update(self.extra_headers)
        return headers

    def parse_stream_line(self, line: str) -> StreamChunk:
        """
        Total line decoder: malformed or irrelevant lines become an
        empty, not-done chunk instead of an exception.
        """
        try:
            chunk = self._parse_line(line)
        except Exception:
            return EMPTY_CHUNK
        if not isinstance(chunk.content, str):
            return StreamChunk("", bool(chunk.done))
        return chunk

    def classify_http_error(
        self,
        status: int,
        body: str,
        headers: Optional[Mapping[str, str]] = None,
        max_chars: int = 500
    ) -> InferenceError:
        """Map a non-2xx upstream response to the error taxonomy"""

        detail = truncate(body or "", max_chars)
        upstream_message = self._extract_error_message(body) or f"{self.name} API error: {status}"

        if status == 429:
            return InferenceError(
                ErrorKind.RATE_LIMIT,
                "Rate limit exceeded. Please wait and try again.",
                detail=truncate(upstream_message, max_chars),
                upstream_status=status,
                retry_after=self._retry_after(headers)
            )
        if status in (401, 403):
            return InferenceError(
                ErrorKind.AUTH_ERROR,
                f"Invalid API key for {self.name}",
                detail=detail,
                upstream_status=status
            )
        if status == 400:
            return InferenceError(
                ErrorKind.BAD_REQUEST,
                truncate(upstream_message, max_chars),
                detail=detail,
                upstream_status=status
            )
        return InferenceError(
            ErrorKind.INTERNAL_ERROR,
            f"{self.name} API error: {status}",
            detail=detail,
            upstream_status=status
        )

    @staticmethod
    def _extract_error_message(body: str) -> Optional[str]:
        if not body:
            return None
        parsed = load_object(body)
        if parsed is None:
            return body.strip() or None
        message = dig(parsed, "error", "message") or parsed.get("message")
        if isinstance(message, str) and message:
            return message
        return None

    @staticmethod
    def _retry_after(headers: Optional[Mapping[str, str]]) -> Optional[float]:
        if not headers:
            return None
        value = headers.get("retry-after")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
