# Swarm and agent data models
# models/agents.py
"""Swarm, agent and conversation models as loaded from the identity and conversation stores"""

from pydantic import BaseModel, Field, field_validator
from typing import Dict, Any, List, Optional
from datetime import datetime
from enum import Enum


class HumanMode(str, Enum):
    """How strongly an agent must defer to human-authored input"""
    OBSERVE = "observe"
    COLLABORATE = "collaborate"
    DIRECT = "direct"


class ContextPriority(str, Enum):
    """Priority levels for shared context blocks"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SenderType(str, Enum):
    """Author kinds of conversation messages"""
    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


class AgentConfig(BaseModel):
    """
    A configured persona bound to one upstream provider and model.
    Loaded fresh per request and never mutated during a call.
    """
    id: str
    name: str
    role: Optional[str] = None
    framework: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    user_id: str

    model_config = {"frozen": True}

    @field_validator("settings", mode="before")
    @classmethod
    def _null_settings(cls, value):
        return value or {}

    @property
    def provider_name(self) -> str:
        return self.framework.strip().lower()


class Swarm(BaseModel):
    """A named collection of agents collaborating on a shared task"""
    id: str
    name: str = ""
    task: Optional[str] = None
    agents: List[AgentConfig] = Field(default_factory=list)

    def find_agent(self, agent_id: str) -> Optional[AgentConfig]:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def agent_names(self) -> Dict[str, str]:
        return {agent.id: agent.name for agent in self.agents}


class ContextBlock(BaseModel):
    """Named snippet injected into an agent's system prompt"""
    id: str
    name: str
    content: str
    # Kept as a plain string: rows with unknown priorities rank as "low"
    priority: Optional[str] = ContextPriority.MEDIUM.value
    shared: bool = True


class ConversationMessage(BaseModel):
    """One entry of a swarm's read-only conversation history"""
    id: str
    sender_type: str
    sender_id: Optional[str] = None
    content: str
    created_at: datetime

    @field_validator("content", mode="before")
    @classmethod
    def _null_content(cls, value):
        return value or ""
