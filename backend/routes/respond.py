# Agent response endpoints
# routes/respond.py
"""
Streaming agent-respond endpoint and the provider catalog.
Errors raised before the stream opens are returned as ``{error, code}``
JSON; once the first byte is sent the response stays SSE.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from typing import Any, Dict
from urllib.parse import quote
import structlog

from middleware.rate_limit import rate_limit_check
from models.requests import AgentRespondRequest
from models.responses import ErrorResponse, ModelPricing, ProviderCatalog, ProviderInfo
from providers.registry import PROVIDERS
from services.token_estimator import DEFAULT_PRICING, MODEL_PRICING
from services.inference_orchestrator import InferenceStream
from utils.config import settings
from utils.errors import InferenceError


logger = structlog.get_logger()
router = APIRouter(prefix=f"/api/{settings.api_version}", tags=["agents"])

# Characters encodeURIComponent leaves alone
HEADER_SAFE_CHARS = "-_.!~*'()"


def encode_header_value(value: str) -> str:
    return quote(value, safe=HEADER_SAFE_CHARS)


class AgentStreamResponse(StreamingResponse):
    """SSE response that closes its inference stream however sending ends"""

    def __init__(self, stream: InferenceStream, **kwargs):
        super().__init__(stream.events, media_type="text/event-stream", **kwargs)
        self.stream = stream

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.stream.aclose()


@router.post(
    "/agent-respond",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"text/event-stream": {}}},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    }
)
async def agent_respond(
    body: AgentRespondRequest,
    request: Request,
    current_user: Dict[str, Any] = Depends(rate_limit_check)
):
    """
    Generate one agent turn in a swarm conversation.
    Streams ``data: {"content": ...}`` events and ends with ``data: [DONE]``.
    """

    orchestrator = request.app.state.orchestrator
    request_id = getattr(request.state, "request_id", None)

    try:
        stream = await orchestrator.respond(current_user["id"], body, request_id)
    except InferenceError as e:
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_response(),
            headers=e.response_headers()
        )

    logger.info("Streaming agent response",
                agent_id=stream.agent.id,
                provider=stream.provider,
                model=stream.model)

    return AgentStreamResponse(
        stream,
        headers={
            "X-Agent-Id": stream.agent.id,
            "X-Agent-Name": encode_header_value(stream.agent.name),
            "X-Request-ID": stream.request_id,
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )


@router.get("/providers", response_model=ProviderCatalog)
async def list_providers() -> ProviderCatalog:
    """Supported providers and the per-model pricing used for cost estimates"""

    return ProviderCatalog(
        providers=[
            ProviderInfo(
                name=adapter.name,
                default_model=adapter.default_model,
                auth_header=adapter.auth_header
            )
            for adapter in PROVIDERS.values()
        ],
        pricing={model: ModelPricing(**rates) for model, rates in MODEL_PRICING.items()},
        default_pricing=ModelPricing(**DEFAULT_PRICING)
    )
