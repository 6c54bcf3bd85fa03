# Environment configuration
# utils/config.py
"""
Configuration management with environment variables and fallbacks.
Every key has a default so the gateway boots against the in-memory store
when Supabase is not configured.
"""

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Centralized configuration for the inference gateway.
    Values are read from the environment (case-insensitive) or `.env`.
    """

    # API Configuration
    app_name: str = "Swarm Inference Gateway"
    api_version: str = "v1"
    version: str = "1.0.0"
    debug: bool = False
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # Supabase (identity store, conversation store, usage ledger, auth)
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Provider dispatch
    provider_timeout_seconds: float = 120.0  # connect + first response bytes
    default_max_tokens: int = 2048
    default_temperature: float = 0.7
    max_tokens_ceiling: int = 32768
    error_body_max_chars: int = 500
    anthropic_version: str = "2023-06-01"

    # Conversation loading
    history_fetch_limit: int = 50

    # Usage ledger
    usage_write_attempts: int = 3

    # Agent selection; None means OS entropy
    agent_selection_seed: Optional[int] = None

    # Rate limiting (runs before the gateway core)
    redis_url: Optional[str] = None
    rate_limit_requests: int = 60
    rate_limit_window_seconds: int = 60

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


settings = Settings()
