# API request models
# models/requests.py
"""Request models for API endpoints"""

from pydantic import BaseModel, Field
from typing import Optional

from utils.config import settings


class AgentRespondRequest(BaseModel):
    """
    Chat request on behalf of one agent in a swarm.

    Identifiers and the message are accepted as raw strings; format checks
    happen in the orchestrator so that rejected requests are still
    recorded in the usage ledger.
    """

    swarm_id: Optional[str] = Field(None, description="Swarm UUID")
    message: Optional[str] = Field(None, description="User message")
    agent_id: Optional[str] = Field(None, description="Agent UUID; random swarm member when omitted")
    human_mode: Optional[str] = Field(None, description="observe, collaborate or direct")
    max_tokens: int = Field(default_factory=lambda: settings.default_max_tokens, description="Maximum output tokens")
    temperature: float = Field(default_factory=lambda: settings.default_temperature, description="Sampling temperature")

    model_config = {
        "json_schema_extra": {
            "example": {
                "swarm_id": "5f1c9a2e-7b4d-4c1e-9a8f-2d3e4f5a6b7c",
                "message": "Draft the launch checklist",
                "human_mode": "collaborate",
                "max_tokens": 1024,
                "temperature": 0.5
            }
        }
    }
