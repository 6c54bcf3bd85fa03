# API response models
# models/responses.py
"""Response models for API endpoints"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime, timezone


class ErrorResponse(BaseModel):
    """Body of every non-streaming error response"""

    error: str
    code: str

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "Rate limit exceeded. Please wait and try again.",
                "code": "RATE_LIMIT"
            }
        }
    }


class ModelPricing(BaseModel):
    """USD per 1000 tokens"""

    input: float
    output: float


class ProviderInfo(BaseModel):
    """One entry of the provider adapter table"""

    name: str
    default_model: str
    auth_header: str


class ProviderCatalog(BaseModel):
    """Supported providers and the pricing table used for cost estimates"""

    providers: List[ProviderInfo]
    pricing: Dict[str, ModelPricing]
    default_pricing: ModelPricing


class ServiceStatus(BaseModel):
    """Health of one dependency"""

    status: str  # "healthy", "degraded", "unhealthy"
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthStatus(BaseModel):
    """Health check response"""

    status: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str

    services: Dict[str, ServiceStatus] = Field(default_factory=dict)
    uptime_seconds: float
    providers: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
