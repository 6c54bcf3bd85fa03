# Shared test fixtures
# tests/conftest.py
"""
Fixtures for the gateway test suite.

Provider APIs are faked with ``httpx.MockTransport``; Supabase is replaced
by ``InMemoryStore``; usage writes are captured by ``CountingRecorder``.
"""

import json
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List

import httpx
import pytest

from models.agents import AgentConfig, ContextBlock, ConversationMessage, Swarm
from models.usage import UsageRecord
from services.inference_orchestrator import InferenceOrchestrator
from services.provider_client import ProviderClient
from services.store import InMemoryStore
from services.usage_recorder import UsageRecorder


OWNER_ID = "6f0e8c1a-2b3d-4e5f-8a9b-0c1d2e3f4a5b"
CALLER_ID = "1a2b3c4d-5e6f-4a7b-8c9d-0e1f2a3b4c5d"
SWARM_ID = "5f1c9a2e-7b4d-4c1e-9a8f-2d3e4f5a6b7c"
EMPTY_SWARM_ID = "7d2e3f4a-5b6c-4d7e-8f9a-0b1c2d3e4f5a"

OPENAI_AGENT_ID = "a1a1a1a1-1111-4111-8111-111111111111"
ANTHROPIC_AGENT_ID = "b2b2b2b2-2222-4222-9222-222222222222"
GOOGLE_AGENT_ID = "c3c3c3c3-3333-4333-a333-333333333333"


class CountingRecorder(UsageRecorder):
    """Recorder that also keeps every finalized record in memory"""

    def __init__(self, ledger, max_attempts: int = 1):
        super().__init__(ledger, max_attempts=max_attempts)
        self.records: List[UsageRecord] = []

    def record(self, usage: UsageRecord) -> None:
        self.records.append(usage)
        super().record(usage)


class FailingLedger:
    """Ledger whose inserts always fail"""

    def __init__(self):
        self.attempts = 0

    async def insert(self, record: UsageRecord) -> None:
        self.attempts += 1
        raise httpx.ConnectError("ledger unavailable")


def openai_sse_body(fragments: Iterable[str], done: bool = True) -> bytes:
    """OpenAI-style SSE body carrying ``fragments`` in order"""
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": fragment}}]})
        for fragment in fragments
    ]
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


@pytest.fixture
def agents() -> List[AgentConfig]:
    return [
        AgentConfig(
            id=OPENAI_AGENT_ID, name="Planner", role="Breaks work into steps",
            framework="OpenAI", model="gpt-4o-mini", user_id=OWNER_ID
        ),
        AgentConfig(
            id=ANTHROPIC_AGENT_ID, name="Critic", role="Reviews plans",
            framework="anthropic", user_id=OWNER_ID
        ),
        AgentConfig(
            id=GOOGLE_AGENT_ID, name="Researcher", role="Finds sources",
            framework="google", user_id=OWNER_ID
        ),
    ]


@pytest.fixture
def store(agents) -> InMemoryStore:
    store = InMemoryStore()
    store.add_swarm(Swarm(id=SWARM_ID, name="Launch", task="Plan the product launch", agents=agents))
    store.add_swarm(Swarm(id=EMPTY_SWARM_ID, name="Empty", task="Nothing", agents=[]))

    for provider in ("openai", "anthropic", "google"):
        store.set_api_key(OWNER_ID, provider, f"sk-{provider}-test")

    store.add_context_block(SWARM_ID, ContextBlock(
        id="ctx-1", name="Budget", content="Keep spend under $10k", priority="high"
    ))

    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    store.add_message(SWARM_ID, ConversationMessage(
        id="m-1", sender_type="human", sender_id=CALLER_ID,
        content="Kickoff", created_at=base
    ))
    store.add_message(SWARM_ID, ConversationMessage(
        id="m-2", sender_type="agent", sender_id=ANTHROPIC_AGENT_ID,
        content="Ready", created_at=base + timedelta(seconds=1)
    ))
    return store


@pytest.fixture
def recorder(store) -> CountingRecorder:
    return CountingRecorder(store)


@pytest.fixture
def provider_calls() -> List[httpx.Request]:
    return []


@pytest.fixture
def make_orchestrator(store, recorder, provider_calls) -> Callable[..., InferenceOrchestrator]:
    """
    Build an orchestrator whose provider traffic goes to ``handler``.
    Every request the handler sees is appended to ``provider_calls``.
    """

    def factory(handler, seed: int = 7, timeout: float = 5.0) -> InferenceOrchestrator:
        async def recording_handler(request: httpx.Request):
            provider_calls.append(request)
            result = handler(request)
            if hasattr(result, "__await__"):
                result = await result
            return result

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
        return InferenceOrchestrator(
            identity_store=store,
            conversation_store=store,
            recorder=recorder,
            provider_client=ProviderClient(http_client, timeout=timeout),
            rng=random.Random(seed)
        )

    return factory


async def collect(events) -> List[bytes]:
    return [event async for event in events]

