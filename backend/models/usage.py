# Usage ledger models
# models/usage.py
"""Per-call usage record appended to the usage ledger"""

from pydantic import BaseModel, Field
from typing import Dict, Any, Optional
from enum import Enum


class UsageStatus(str, Enum):
    """Lifecycle states of a usage record"""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class UsageRecord(BaseModel):
    """
    One row per inference call, successful or not.
    Costs are in USD and computed independently for input and output.
    """
    user_id: str
    swarm_id: Optional[str] = None
    agent_id: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    input_cost: float = 0.0
    output_cost: float = 0.0
    latency_ms: int = 0
    status: UsageStatus = UsageStatus.PENDING
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    request_metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        """Serialize for the ledger table"""
        return self.model_dump(mode="json")
