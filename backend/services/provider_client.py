# Upstream provider HTTP client
# services/provider_client.py
"""
Opens streaming requests against provider APIs.

A stream is handed back only once the provider has answered 2xx, so the
caller can still choose between a JSON error and an SSE response.
Provider calls are never retried.
"""

import asyncio
import time
from typing import Optional
import httpx
import structlog

from middleware.metrics import MetricsCollector
from models.provider import ProviderRequestParams
from providers.base import ProviderAdapter
from utils.config import settings
from utils.errors import ErrorKind, InferenceError


logger = structlog.get_logger()


class ProviderClient:
    """Thin wrapper over a shared ``httpx.AsyncClient`` connection pool"""

    def __init__(self, http_client: httpx.AsyncClient, timeout: Optional[float] = None):
        self.http_client = http_client
        self.timeout = timeout or settings.provider_timeout_seconds
        self.logger = logger.bind(service="ProviderClient")

    async def open_stream(
        self,
        adapter: ProviderAdapter,
        api_key: str,
        params: ProviderRequestParams,
        timeout: Optional[float] = None
    ) -> httpx.Response:
        """
        Send the request and wait for response headers.

        ``timeout`` bounds connect plus time to first response; the body
        that follows is unbounded. Raises ``InferenceError`` for timeouts,
        transport failures and non-2xx answers.
        """

        timeout = timeout or self.timeout
        request = self.http_client.build_request(
            "POST",
            adapter.request_url(params),
            headers=adapter.authenticate(api_key),
            json=adapter.build_request(params),
            # Read timeout off: streams may idle between tokens
            timeout=httpx.Timeout(timeout, read=None)
        )

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.http_client.send(request, stream=True),
                timeout=timeout
            )

        except (asyncio.TimeoutError, httpx.TimeoutException):
            MetricsCollector.record_provider_request(adapter.name, "timeout")
            self.logger.warning("Provider request timed out",
                                provider=adapter.name,
                                model=params.model,
                                timeout_seconds=timeout)
            raise InferenceError(
                ErrorKind.TIMEOUT,
                f"{adapter.name} did not respond within {timeout:g} seconds",
                detail=f"handshake exceeded {timeout:g}s"
            )

        except httpx.HTTPError as e:
            MetricsCollector.record_provider_request(adapter.name, "transport_error")
            self.logger.error("Provider request failed",
                              provider=adapter.name,
                              error=str(e),
                              error_type=type(e).__name__)
            raise InferenceError(
                ErrorKind.INTERNAL_ERROR,
                f"Could not reach {adapter.name}",
                detail=f"{type(e).__name__}: {e}"
            )

        handshake = time.monotonic() - start

        if response.is_success:
            MetricsCollector.record_provider_request(adapter.name, "success", handshake)
            self.logger.info("Provider stream opened",
                             provider=adapter.name,
                             model=params.model,
                             handshake_ms=round(handshake * 1000, 2))
            return response

        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError:
            body = ""
        finally:
            await response.aclose()

        error = adapter.classify_http_error(
            response.status_code,
            body,
            response.headers,
            settings.error_body_max_chars
        )

        MetricsCollector.record_provider_request(adapter.name, error.code.lower(), handshake)
        self.logger.warning("Provider returned error",
                            provider=adapter.name,
                            model=params.model,
                            upstream_status=response.status_code,
                            code=error.code,
                            detail=error.detail)
        raise error
