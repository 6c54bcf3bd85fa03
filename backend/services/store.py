# Persistence collaborators
# services/store.py
"""
Identity store, conversation store and usage ledger.

``SupabaseStore`` talks to the Supabase PostgREST API with the service-role
key. ``InMemoryStore`` keeps everything in process for development and
tests and is used automatically when Supabase is not configured.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional
import httpx
import structlog

from models.agents import AgentConfig, ContextBlock, ConversationMessage, Swarm
from models.usage import UsageRecord
from utils.config import settings


logger = structlog.get_logger()


class IdentityStore(ABC):
    """Swarm rosters and per-user provider credentials"""

    @abstractmethod
    async def get_swarm(self, swarm_id: str) -> Optional[Swarm]:
        ...

    @abstractmethod
    async def get_api_key(self, user_id: str, provider: str) -> Optional[str]:
        ...


class ConversationStore(ABC):
    """Read-only view of shared context and message history"""

    @abstractmethod
    async def get_context_blocks(self, swarm_id: str) -> List[ContextBlock]:
        """Shared blocks only"""

    @abstractmethod
    async def get_recent_messages(self, swarm_id: str, limit: int) -> List[ConversationMessage]:
        """The most recent ``limit`` messages, oldest first"""


class UsageLedger(ABC):
    """Append-only usage table"""

    @abstractmethod
    async def insert(self, record: UsageRecord) -> None:
        ...


class SupabaseStore(IdentityStore, ConversationStore, UsageLedger):
    """All three collaborators over Supabase's REST interface"""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        url: Optional[str] = None,
        service_key: Optional[str] = None
    ):
        self.http_client = http_client
        self.base_url = f"{(url or settings.supabase_url).rstrip('/')}/rest/v1"
        key = service_key or settings.supabase_service_role_key
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self.logger = logger.bind(service="SupabaseStore")

    async def _select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self.http_client.get(
            f"{self.base_url}/{table}",
            params=params,
            headers=self.headers,
            timeout=10.0
        )
        response.raise_for_status()
        rows = response.json()
        return rows if isinstance(rows, list) else []

    async def get_swarm(self, swarm_id: str) -> Optional[Swarm]:
        rows = await self._select("swarms", {
            "select": "*,swarm_agents(agent:agents(*))",
            "id": f"eq.{swarm_id}",
            "limit": "1",
        })
        if not rows:
            return None

        row = rows[0]
        agents = [
            AgentConfig.model_validate(link["agent"])
            for link in row.get("swarm_agents") or []
            if link.get("agent")
        ]
        return Swarm(
            id=row["id"],
            name=row.get("name") or "",
            task=row.get("task"),
            agents=agents
        )

    async def get_api_key(self, user_id: str, provider: str) -> Optional[str]:
        rows = await self._select("integrations", {
            "select": "credentials",
            "user_id": f"eq.{user_id}",
            "provider": f"eq.{provider}",
            "limit": "1",
        })
        if not rows:
            return None
        credentials = rows[0].get("credentials") or {}
        api_key = credentials.get("api_key") if isinstance(credentials, dict) else None
        return api_key or None

    async def get_context_blocks(self, swarm_id: str) -> List[ContextBlock]:
        rows = await self._select("context_blocks", {
            "select": "*",
            "swarm_id": f"eq.{swarm_id}",
            "shared": "eq.true",
        })
        return [ContextBlock.model_validate(row) for row in rows]

    async def get_recent_messages(self, swarm_id: str, limit: int) -> List[ConversationMessage]:
        # Newest first so the limit keeps the latest messages, then flip
        rows = await self._select("messages", {
            "select": "*",
            "swarm_id": f"eq.{swarm_id}",
            "order": "created_at.desc",
            "limit": str(limit),
        })
        messages = [ConversationMessage.model_validate(row) for row in rows]
        messages.reverse()
        return messages

    async def insert(self, record: UsageRecord) -> None:
        response = await self.http_client.post(
            f"{self.base_url}/ai_usage",
            json=record.to_row(),
            headers={**self.headers, "Prefer": "return=minimal"},
            timeout=10.0
        )
        response.raise_for_status()

    async def ping(self) -> bool:
        try:
            response = await self.http_client.get(
                f"{self.base_url}/swarms",
                params={"select": "id", "limit": "1"},
                headers=self.headers,
                timeout=5.0
            )
            return response.status_code < 500
        except httpx.HTTPError as e:
            self.logger.warning("Supabase ping failed", error=str(e))
            return False


class InMemoryStore(IdentityStore, ConversationStore, UsageLedger):
    """Process-local stand-in for Supabase"""

    def __init__(self):
        self.swarms: Dict[str, Swarm] = {}
        self.api_keys: Dict[tuple, str] = {}
        self.context_blocks: Dict[str, List[ContextBlock]] = defaultdict(list)
        self.messages: Dict[str, List[ConversationMessage]] = defaultdict(list)
        self.usage: List[UsageRecord] = []

    def add_swarm(self, swarm: Swarm) -> None:
        self.swarms[swarm.id] = swarm

    def set_api_key(self, user_id: str, provider: str, api_key: str) -> None:
        self.api_keys[(user_id, provider.lower())] = api_key

    def add_context_block(self, swarm_id: str, block: ContextBlock) -> None:
        self.context_blocks[swarm_id].append(block)

    def add_message(self, swarm_id: str, message: ConversationMessage) -> None:
        self.messages[swarm_id].append(message)

    async def get_swarm(self, swarm_id: str) -> Optional[Swarm]:
        return self.swarms.get(swarm_id)

    async def get_api_key(self, user_id: str, provider: str) -> Optional[str]:
        return self.api_keys.get((user_id, provider.lower()))

    async def get_context_blocks(self, swarm_id: str) -> List[ContextBlock]:
        return [block for block in self.context_blocks.get(swarm_id, []) if block.shared]

    async def get_recent_messages(self, swarm_id: str, limit: int) -> List[ConversationMessage]:
        if limit <= 0:
            return []
        ordered = sorted(self.messages.get(swarm_id, []), key=lambda m: m.created_at)
        return ordered[-limit:]

    async def insert(self, record: UsageRecord) -> None:
        self.usage.append(record.model_copy(deep=True))

    async def ping(self) -> bool:
        return True
