# FastAPI application entry
# main.py
"""
FastAPI application entry point for the swarm inference gateway.
Shared resources (HTTP pool, store, usage recorder, rate limiter) live on
``app.state`` and are created and torn down by the lifespan handler.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import httpx
import os
import structlog

from middleware.logging import LoggingMiddleware, StructuredLogger
from middleware.metrics import MetricsMiddleware
from middleware.rate_limit import RateLimiter
from routes import respond_router, health_router
from services.auth_service import AuthService
from services.inference_orchestrator import InferenceOrchestrator
from services.provider_client import ProviderClient
from services.store import InMemoryStore, SupabaseStore
from services.usage_recorder import UsageRecorder
from utils.config import settings
from utils.errors import InferenceError


StructuredLogger.configure()
logger = structlog.get_logger()

MAX_BODY_BYTES = 1_000_000

CODE_BY_STATUS = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    429: "RATE_LIMITED",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared services on startup and release them on shutdown"""

    logger.info("Starting inference gateway",
                version=settings.version,
                environment="production" if not settings.debug else "development")

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.provider_timeout_seconds),
        limits=httpx.Limits(max_connections=200, max_keepalive_connections=50)
    )

    if settings.supabase_configured:
        store = SupabaseStore(http_client)
        logger.info("Using Supabase store", url=settings.supabase_url)
    else:
        store = InMemoryStore()
        logger.warning("Supabase not configured, using in-memory store")

    recorder = UsageRecorder(store)
    rate_limiter = RateLimiter()
    await rate_limiter.initialize()

    app.state.http_client = http_client
    app.state.store = store
    app.state.recorder = recorder
    app.state.rate_limiter = rate_limiter
    app.state.auth_service = AuthService(http_client)
    app.state.orchestrator = InferenceOrchestrator(
        identity_store=store,
        conversation_store=store,
        recorder=recorder,
        provider_client=ProviderClient(http_client)
    )

    logger.info("All services initialized")

    yield

    logger.info("Shutting down application...")
    try:
        await recorder.drain()
        await rate_limiter.close()
    finally:
        await http_client.aclose()
    logger.info("Cleanup completed")


def register_exception_handlers(app: FastAPI) -> None:
    """Every error leaves the gateway as ``{error, code}`` JSON"""

    @app.exception_handler(InferenceError)
    async def inference_error_handler(request: Request, exc: InferenceError):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.response_headers()
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": str(exc.detail),
                "code": CODE_BY_STATUS.get(exc.status_code, "HTTP_ERROR")
            },
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
        else:
            message = "Invalid request"

        return JSONResponse(
            status_code=400,
            content={"error": message, "code": "VALIDATION_ERROR"}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception",
                     path=request.url.path,
                     method=request.method,
                     error=str(exc),
                     exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error": str(exc) if settings.debug else "An internal error occurred. Please try again later.",
                "code": "INTERNAL_ERROR"
            }
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Multi-provider inference routing and SSE streaming for agent swarms",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else settings.cors_origins,
        allow_credentials=not settings.debug,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID", "X-Agent-Id", "X-Agent-Name",
            "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"
        ]
    )

    # Order matters: added last runs first
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)

    @app.middleware("http")
    async def limit_request_size(request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_BODY_BYTES:
            return JSONResponse(
                status_code=413,
                content={"error": "Request entity too large", "code": "PAYLOAD_TOO_LARGE"}
            )
        return await call_next(request)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    register_exception_handlers(app)

    app.include_router(respond_router)
    app.include_router(health_router)

    @app.get("/", tags=["root"])
    async def root():
        """Service information"""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "status": "operational",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": {
                "agent_respond": f"/api/{settings.api_version}/agent-respond",
                "providers": f"/api/{settings.api_version}/providers",
                "health": "/healthz",
                "metrics": "/metrics",
                "docs": "/docs" if settings.debug else None
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=settings.debug,
        reload_dirs=["providers", "services", "routes", "middleware", "utils", "models"],
        log_config={
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                },
                "json": {
                    "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                    "format": "%(asctime)s %(name)s %(levelname)s %(message)s"
                },
            },
            "handlers": {
                "default": {
                    "formatter": "json" if not settings.debug else "default",
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "level": "INFO",
                "handlers": ["default"],
            },
            "loggers": {
                "uvicorn.error": {"level": "INFO", "handlers": ["default"], "propagate": False},
                "uvicorn.access": {"level": "INFO", "handlers": ["default"], "propagate": False}
            }
        },
        workers=1,
        loop="asyncio"
    )
