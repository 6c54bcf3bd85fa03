# Prometheus instrumentation
# middleware/metrics.py
"""Prometheus metrics instrumentation middleware"""

from fastapi import Request
from prometheus_client import Counter, Histogram, Gauge, Info
import re
import time
import structlog

from utils.config import settings


logger = structlog.get_logger()


# HTTP surface
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"]
)

ACTIVE_REQUESTS = Gauge(
    "http_requests_active",
    "Active HTTP requests"
)

# Upstream providers
PROVIDER_REQUESTS = Counter(
    "provider_requests_total",
    "Upstream inference requests by outcome",
    ["provider", "status"]
)

PROVIDER_HANDSHAKE_DURATION = Histogram(
    "provider_handshake_duration_seconds",
    "Time until the provider returned response headers",
    ["provider"]
)

ACTIVE_STREAMS = Gauge(
    "inference_streams_active",
    "SSE streams currently being relayed",
    ["provider"]
)

# Usage accounting
TOKENS_ESTIMATED = Counter(
    "inference_tokens_estimated_total",
    "Estimated tokens per direction",
    ["provider", "direction"]
)

COST_ESTIMATED = Counter(
    "inference_cost_usd_total",
    "Estimated spend in USD",
    ["provider"]
)

USAGE_RECORDS = Counter(
    "usage_records_total",
    "Finalized usage records",
    ["status", "code"]
)

USAGE_WRITE_FAILURES = Counter(
    "usage_write_failures_total",
    "Usage records that could not be written to the ledger"
)

APP_INFO = Info(
    "app_info",
    "Application information"
)

APP_INFO.info({
    "version": settings.version,
    "name": "swarm-inference-gateway"
})


class MetricsMiddleware:
    """
    Prometheus metrics collection middleware.
    Duration covers the full response, including streamed bodies.
    """

    def __init__(self, app=None):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)

        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            await self.app(scope, receive, send)
            return

        ACTIVE_REQUESTS.inc()
        start_time = time.time()
        endpoint = self._normalize_endpoint(request.url.path)
        response_status = {"status_code": 500}

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                response_status["status_code"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status=response_status["status_code"]
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(time.time() - start_time)
            ACTIVE_REQUESTS.dec()

    def _normalize_endpoint(self, path: str) -> str:
        """Collapse dynamic path segments so label cardinality stays bounded"""
        path = re.sub(
            r'/[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}',
            '/{id}',
            path
        )
        return re.sub(r'/\d+', '/{id}', path)


class MetricsCollector:
    """
    Application-specific metrics collector.
    Tracks gateway metrics beyond HTTP.
    """

    @staticmethod
    def record_provider_request(provider: str, status: str, handshake_seconds: float = None):
        PROVIDER_REQUESTS.labels(provider=provider, status=status).inc()
        if handshake_seconds is not None:
            PROVIDER_HANDSHAKE_DURATION.labels(provider=provider).observe(handshake_seconds)

    @staticmethod
    def stream_opened(provider: str):
        ACTIVE_STREAMS.labels(provider=provider).inc()

    @staticmethod
    def stream_closed(provider: str):
        ACTIVE_STREAMS.labels(provider=provider).dec()

    @staticmethod
    def record_usage(usage):
        """Record token, cost and outcome counters for a finalized usage record"""

        provider = usage.provider or "unknown"
        USAGE_RECORDS.labels(
            status=usage.status.value,
            code=usage.error_code or "OK"
        ).inc()

        if usage.input_tokens:
            TOKENS_ESTIMATED.labels(provider=provider, direction="input").inc(usage.input_tokens)
        if usage.output_tokens:
            TOKENS_ESTIMATED.labels(provider=provider, direction="output").inc(usage.output_tokens)

        cost = usage.input_cost + usage.output_cost
        if cost > 0:
            COST_ESTIMATED.labels(provider=provider).inc(cost)

    @staticmethod
    def record_usage_write_failure():
        USAGE_WRITE_FAILURES.inc()
