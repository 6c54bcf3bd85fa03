# Structured logging
# middleware/logging.py
"""Structured logging middleware with request tracing"""

from fastapi import Request
import logging
import sys
import time
import uuid
import structlog

from utils.config import settings


logger = structlog.get_logger()

REDACTED_HEADERS = {"authorization", "cookie", "x-api-key", "x-goog-api-key", "apikey"}


class LoggingMiddleware:
    """
    Structured logging middleware for request tracking.
    The request id is bound into structlog contextvars so every log line
    emitted while serving the request carries it.
    """

    def __init__(self, app=None):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)

        # Honor an upstream proxy's id when it sends one
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        request_logger = logger.bind(
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None
        )

        start_time = time.time()
        request_logger.info(
            "Request started",
            query_params=dict(request.query_params),
            headers={
                k: v for k, v in request.headers.items()
                if k.lower() not in REDACTED_HEADERS
            }
        )

        response_status = {"status_code": 500}

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                response_status["status_code"] = message["status"]

                headers = list(message.get("headers", []))
                if not any(k.lower() == b"x-request-id" for k, _ in headers):
                    headers.append((b"X-Request-ID", request_id.encode()))
                message["headers"] = headers

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)

            request_logger.info(
                "Request completed",
                status_code=response_status["status_code"],
                duration_ms=round((time.time() - start_time) * 1000, 2)
            )

        except Exception as e:
            request_logger.error(
                "Request failed",
                exception=str(e),
                exception_type=type(e).__name__,
                duration_ms=round((time.time() - start_time) * 1000, 2),
                exc_info=True
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()


class StructuredLogger:
    """
    Structured logger configuration for the application.
    JSON lines in production, colored console output in debug.
    """

    @staticmethod
    def configure(debug: bool = None):
        debug = settings.debug if debug is None else debug

        logging.basicConfig(
            format="%(message)s",
            stream=sys.stdout,
            level=logging.DEBUG if debug else logging.INFO
        )

        renderer = (
            structlog.dev.ConsoleRenderer()
            if debug
            else structlog.processors.JSONRenderer()
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                add_app_context,
                renderer
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )


def add_app_context(logger, method_name, event_dict):
    """Add application context to all log entries"""
    event_dict["app"] = "swarm-inference-gateway"
    event_dict["version"] = settings.version
    event_dict["environment"] = "development" if settings.debug else "production"
    return event_dict
