# Orchestrator tests
# tests/test_orchestrator.py
"""End-to-end behavior of one agent turn against faked providers"""

import asyncio
import json
import random
from collections import Counter

import httpx
import pytest

from models.agents import Swarm
from models.requests import AgentRespondRequest
from models.usage import UsageStatus
from services.inference_orchestrator import InferenceOrchestrator
from services.stream_normalizer import DONE_EVENT
from tests.conftest import (
    ANTHROPIC_AGENT_ID,
    EMPTY_SWARM_ID,
    GOOGLE_AGENT_ID,
    OPENAI_AGENT_ID,
    OWNER_ID,
    CALLER_ID,
    SWARM_ID,
    collect,
    openai_sse_body,
)
from utils.errors import ErrorKind, InferenceError


def make_request(**overrides) -> AgentRespondRequest:
    fields = {"swarm_id": SWARM_ID, "message": "What should we do first?", "agent_id": OPENAI_AGENT_ID}
    fields.update(overrides)
    return AgentRespondRequest(**fields)


def openai_ok(fragments=("Ship", " it")):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=openai_sse_body(list(fragments))
        )
    return handler


def never_called(request: httpx.Request) -> httpx.Response:
    raise AssertionError("provider must not be called")


class TestSuccessfulTurn:

    @pytest.mark.asyncio
    async def test_streams_canonical_events_and_records_success(self, make_orchestrator, recorder, provider_calls):
        orchestrator = make_orchestrator(openai_ok())

        stream = await orchestrator.respond(CALLER_ID, make_request(), "req-1")
        events = await collect(stream.events)
        await recorder.drain()

        assert stream.agent.id == OPENAI_AGENT_ID
        assert stream.request_id == "req-1"
        assert events == [
            b'data: {"content": "Ship"}\n\n',
            b'data: {"content": " it"}\n\n',
            DONE_EVENT,
        ]

        assert len(recorder.records) == 1
        record = recorder.records[0]
        assert record.status is UsageStatus.SUCCESS
        assert record.user_id == CALLER_ID
        assert record.swarm_id == SWARM_ID
        assert record.agent_id == OPENAI_AGENT_ID
        assert record.provider == "openai"
        assert record.model == "gpt-4o-mini"
        assert record.input_tokens > 0
        assert record.output_tokens == 2
        assert record.input_cost > 0
        assert record.request_metadata["request_id"] == "req-1"
        assert record.request_metadata["message_count"] == 3

    @pytest.mark.asyncio
    async def test_request_carries_prompt_history_and_owner_key(self, make_orchestrator, provider_calls):
        orchestrator = make_orchestrator(openai_ok())

        stream = await orchestrator.respond(CALLER_ID, make_request(human_mode="direct"))
        await collect(stream.events)

        request = provider_calls[0]
        body = json.loads(request.content)
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-openai-test"

        system = body["messages"][0]["content"]
        assert "## Current Task\nPlan the product launch" in system
        assert "## Human Interaction Mode: DIRECT" in system
        assert "### Budget\nKeep spend under $10k" in system

        assert body["messages"][1:] == [
            {"role": "user", "content": "Kickoff"},
            {"role": "assistant", "content": "[Critic]: Ready"},
            {"role": "user", "content": "What should we do first?"},
        ]
        assert body["max_tokens"] == 2048

    @pytest.mark.asyncio
    async def test_default_model_used_when_agent_has_none(self, make_orchestrator, provider_calls, recorder):
        def handler(request):
            return httpx.Response(200, content=b'data: {"type":"message_stop"}\n\n')

        orchestrator = make_orchestrator(handler)
        stream = await orchestrator.respond(CALLER_ID, make_request(agent_id=ANTHROPIC_AGENT_ID))
        await collect(stream.events)
        await recorder.drain()

        assert json.loads(provider_calls[0].content)["model"] == "claude-sonnet-4-20250514"
        assert provider_calls[0].headers["x-api-key"] == "sk-anthropic-test"
        assert recorder.records[0].model == "claude-sonnet-4-20250514"

    @pytest.mark.asyncio
    async def test_google_model_goes_in_url(self, make_orchestrator, provider_calls):
        def handler(request):
            return httpx.Response(
                200,
                content=b'data: {"candidates":[{"content":{"parts":[{"text":"ok"}]},"finishReason":"STOP"}]}\n\n'
            )

        orchestrator = make_orchestrator(handler)
        stream = await orchestrator.respond(CALLER_ID, make_request(agent_id=GOOGLE_AGENT_ID))
        events = await collect(stream.events)

        assert provider_calls[0].url.path.endswith("/gemini-1.5-pro:streamGenerateContent")
        assert provider_calls[0].url.params["alt"] == "sse"
        assert events[-1] == DONE_EVENT


class TestRejections:

    async def assert_rejected(self, orchestrator, recorder, request, kind, status):
        with pytest.raises(InferenceError) as excinfo:
            await orchestrator.respond(CALLER_ID, request)
        await recorder.drain()

        assert excinfo.value.kind is kind
        assert excinfo.value.status_code == status
        assert len(recorder.records) == 1
        record = recorder.records[0]
        assert record.status is UsageStatus.ERROR
        assert record.error_code == kind.value
        assert record.output_tokens == 0
        return record

    @pytest.mark.asyncio
    async def test_agent_not_in_roster(self, make_orchestrator, recorder, provider_calls):
        orchestrator = make_orchestrator(never_called)
        request = make_request(agent_id="d4d4d4d4-4444-4444-b444-444444444444")

        await self.assert_rejected(orchestrator, recorder, request, ErrorKind.VALIDATION_ERROR, 400)
        assert provider_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"swarm_id": None},
        {"swarm_id": "not-a-uuid"},
        {"agent_id": "also-not-a-uuid"},
        {"message": None},
        {"message": "<script>alert(1)</script>\x00  "},
        {"human_mode": "shout"},
        {"max_tokens": 0},
        {"max_tokens": 40000},
        {"temperature": 2.5},
    ])
    async def test_invalid_input(self, make_orchestrator, recorder, provider_calls, overrides):
        orchestrator = make_orchestrator(never_called)
        await self.assert_rejected(
            orchestrator, recorder, make_request(**overrides), ErrorKind.VALIDATION_ERROR, 400
        )
        assert provider_calls == []

    @pytest.mark.asyncio
    async def test_swarm_not_found(self, make_orchestrator, recorder):
        orchestrator = make_orchestrator(never_called)
        request = make_request(swarm_id="e5e5e5e5-5555-4555-8555-555555555555", agent_id=None)
        await self.assert_rejected(orchestrator, recorder, request, ErrorKind.NOT_FOUND, 404)

    @pytest.mark.asyncio
    async def test_swarm_without_agents(self, make_orchestrator, recorder):
        orchestrator = make_orchestrator(never_called)
        request = make_request(swarm_id=EMPTY_SWARM_ID, agent_id=None)
        await self.assert_rejected(orchestrator, recorder, request, ErrorKind.VALIDATION_ERROR, 400)

    @pytest.mark.asyncio
    async def test_missing_api_key(self, make_orchestrator, recorder, store):
        store.api_keys.pop((OWNER_ID, "openai"))
        orchestrator = make_orchestrator(never_called)

        with pytest.raises(InferenceError) as excinfo:
            await orchestrator.respond(CALLER_ID, make_request())
        await recorder.drain()

        assert excinfo.value.kind is ErrorKind.MISSING_API_KEY
        assert "Settings > Integrations" in excinfo.value.message
        assert recorder.records[0].error_code == "MISSING_API_KEY"
        assert recorder.records[0].provider == "openai"

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, make_orchestrator, recorder, store, agents):
        swarm = store.swarms[SWARM_ID]
        rogue = agents[0].model_copy(update={"framework": "mistral"})
        store.swarms[SWARM_ID] = swarm.model_copy(update={"agents": [rogue]})

        orchestrator = make_orchestrator(never_called)
        await self.assert_rejected(
            orchestrator, recorder, make_request(), ErrorKind.UNSUPPORTED_PROVIDER, 400
        )


class TestUpstreamFailures:

    @pytest.mark.asyncio
    async def test_rate_limited_upstream(self, make_orchestrator, recorder):
        def handler(request):
            return httpx.Response(
                429,
                headers={"retry-after": "30"},
                json={"error": {"message": "Too many requests"}}
            )

        orchestrator = make_orchestrator(handler)
        with pytest.raises(InferenceError) as excinfo:
            await orchestrator.respond(CALLER_ID, make_request())
        await recorder.drain()

        error = excinfo.value
        assert error.status_code == 429
        assert error.to_response() == {
            "error": "Rate limit exceeded. Please wait and try again.",
            "code": "RATE_LIMIT",
        }
        assert error.response_headers() == {"Retry-After": "30"}

        assert len(recorder.records) == 1
        record = recorder.records[0]
        assert record.status is UsageStatus.ERROR
        assert record.error_code == "RATE_LIMIT"
        assert record.output_tokens == 0
        assert "Too many requests" in record.error_message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,kind", [
        (401, ErrorKind.AUTH_ERROR),
        (400, ErrorKind.BAD_REQUEST),
        (502, ErrorKind.INTERNAL_ERROR),
    ])
    async def test_status_mapping(self, make_orchestrator, recorder, status, kind):
        orchestrator = make_orchestrator(lambda request: httpx.Response(status, text="upstream says no"))

        with pytest.raises(InferenceError) as excinfo:
            await orchestrator.respond(CALLER_ID, make_request())
        await recorder.drain()

        assert excinfo.value.kind is kind
        assert recorder.records[0].error_code == kind.value

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, make_orchestrator, recorder):
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, content=openai_sse_body(["late"]))

        orchestrator = make_orchestrator(slow, timeout=0.05)
        with pytest.raises(InferenceError) as excinfo:
            await orchestrator.respond(CALLER_ID, make_request())
        await recorder.drain()

        assert excinfo.value.kind is ErrorKind.TIMEOUT
        assert excinfo.value.status_code == 504
        assert recorder.records[0].error_code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_transport_error(self, make_orchestrator, recorder):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        orchestrator = make_orchestrator(handler)
        with pytest.raises(InferenceError) as excinfo:
            await orchestrator.respond(CALLER_ID, make_request())
        await recorder.drain()

        assert excinfo.value.kind is ErrorKind.INTERNAL_ERROR
        assert len(recorder.records) == 1


class TestStreamingFailures:

    @pytest.mark.asyncio
    async def test_caller_disconnect_records_partial_output(self, make_orchestrator, recorder):
        async def endless():
            yield b'data: {"choices":[{"delta":{"content":"abcdefgh"}}]}\n\n'
            while True:
                await asyncio.sleep(0.01)
                yield b'data: {"choices":[{"delta":{"content":"more"}}]}\n\n'

        orchestrator = make_orchestrator(lambda request: httpx.Response(200, content=endless()))
        stream = await orchestrator.respond(CALLER_ID, make_request())

        first = await stream.events.__anext__()
        await stream.events.aclose()
        await recorder.drain()

        assert first == b'data: {"content": "abcdefgh"}\n\n'
        assert len(recorder.records) == 1
        record = recorder.records[0]
        assert record.status is UsageStatus.ERROR
        assert record.error_code == "STREAM_INTERRUPTED"
        assert record.output_tokens == 2

    @pytest.mark.asyncio
    async def test_upstream_drop_mid_stream(self, make_orchestrator, recorder):
        async def dropping():
            yield b'data: {"choices":[{"delta":{"content":"half"}}]}\n\n'
            raise httpx.ReadError("connection reset")

        orchestrator = make_orchestrator(lambda request: httpx.Response(200, content=dropping()))
        stream = await orchestrator.respond(CALLER_ID, make_request())
        events = await collect(stream.events)
        await recorder.drain()

        assert events == [b'data: {"content": "half"}\n\n']
        assert len(recorder.records) == 1
        assert recorder.records[0].error_code == "INTERNAL_ERROR"
        assert recorder.records[0].output_tokens == 1

    @pytest.mark.asyncio
    async def test_unread_stream_closed_by_owner(self, make_orchestrator, recorder):
        orchestrator = make_orchestrator(openai_ok())
        stream = await orchestrator.respond(CALLER_ID, make_request())

        await stream.aclose()
        await recorder.drain()

        assert stream.response.is_closed
        assert len(recorder.records) == 1
        record = recorder.records[0]
        assert record.status is UsageStatus.ERROR
        assert record.error_code == "STREAM_INTERRUPTED"
        assert record.output_tokens == 0

    @pytest.mark.asyncio
    async def test_close_after_full_read_keeps_success(self, make_orchestrator, recorder):
        orchestrator = make_orchestrator(openai_ok())
        stream = await orchestrator.respond(CALLER_ID, make_request())

        await collect(stream.events)
        await stream.aclose()
        await recorder.drain()

        assert [r.status for r in recorder.records] == [UsageStatus.SUCCESS]

    @pytest.mark.asyncio
    async def test_cancelled_while_dispatching(self, make_orchestrator, recorder):
        dispatched = asyncio.Event()

        async def hanging(request):
            dispatched.set()
            await asyncio.Event().wait()

        orchestrator = make_orchestrator(hanging, timeout=30.0)
        task = asyncio.create_task(orchestrator.respond(CALLER_ID, make_request()))
        await asyncio.wait_for(dispatched.wait(), timeout=1.0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await recorder.drain()

        assert len(recorder.records) == 1
        record = recorder.records[0]
        assert record.status is UsageStatus.ERROR
        assert record.error_code == "STREAM_INTERRUPTED"
        assert record.output_tokens == 0
        assert record.input_cost == 0
        assert record.output_cost == 0


class TestAgentSelection:

    @pytest.fixture
    def swarm(self, agents) -> Swarm:
        return Swarm(id=SWARM_ID, agents=agents)

    def test_seeded_selection_is_uniform(self, swarm):
        orchestrator = InferenceOrchestrator(None, None, None, None, rng=random.Random(1234))
        counts = Counter(orchestrator.select_agent(swarm).id for _ in range(1000))

        assert set(counts) == {OPENAI_AGENT_ID, ANTHROPIC_AGENT_ID, GOOGLE_AGENT_ID}
        for count in counts.values():
            assert 270 <= count <= 400

    def test_same_seed_same_sequence(self, swarm):
        first = InferenceOrchestrator(None, None, None, None, rng=random.Random(5))
        second = InferenceOrchestrator(None, None, None, None, rng=random.Random(5))

        assert [first.select_agent(swarm).id for _ in range(50)] == \
               [second.select_agent(swarm).id for _ in range(50)]

    def test_explicit_agent_wins(self, swarm):
        orchestrator = InferenceOrchestrator(None, None, None, None, rng=random.Random(0))
        assert orchestrator.select_agent(swarm, GOOGLE_AGENT_ID).id == GOOGLE_AGENT_ID
