# Usage recorder tests
# tests/test_usage_recorder.py

import pytest

from models.usage import UsageRecord, UsageStatus
from services.store import InMemoryStore
from services.usage_recorder import UsageRecorder, UsageSession
from tests.conftest import CountingRecorder, FailingLedger
from utils.errors import ErrorKind, InferenceError


class TestUsageRecorder:

    @pytest.mark.asyncio
    async def test_write_reaches_ledger(self):
        store = InMemoryStore()
        recorder = UsageRecorder(store)

        recorder.record(UsageRecord(user_id="u1", status=UsageStatus.SUCCESS))
        await recorder.drain()

        assert [r.user_id for r in store.usage] == ["u1"]
        assert recorder.pending_writes == 0

    @pytest.mark.asyncio
    async def test_ledger_failure_is_swallowed_after_retries(self):
        ledger = FailingLedger()
        recorder = UsageRecorder(ledger, max_attempts=2)

        recorder.record(UsageRecord(user_id="u1", status=UsageStatus.ERROR))
        await recorder.drain()

        assert ledger.attempts == 2

    def test_record_without_event_loop_does_not_raise(self):
        recorder = UsageRecorder(InMemoryStore())
        recorder.record(UsageRecord(user_id="u1"))
        assert recorder.pending_writes == 0


class TestUsageSession:

    @pytest.mark.asyncio
    async def test_success_computes_cost_and_latency(self):
        recorder = CountingRecorder(InMemoryStore())
        session = UsageSession(recorder, "u1", model="gpt-4o", input_tokens=1000)

        assert session.succeed(output_tokens=500) is True
        await recorder.drain()

        record = recorder.records[0]
        assert record.status is UsageStatus.SUCCESS
        assert record.output_tokens == 500
        assert record.input_cost == pytest.approx(0.0025)
        assert record.output_cost == pytest.approx(0.005)
        assert record.latency_ms >= 0
        assert record.error_code is None

    @pytest.mark.asyncio
    async def test_finalizes_once(self):
        recorder = CountingRecorder(InMemoryStore())
        session = UsageSession(recorder, "u1", model="gpt-4o")

        assert session.succeed(10) is True
        assert session.fail(InferenceError(ErrorKind.INTERNAL_ERROR, "late")) is False
        assert session.succeed(20) is False
        await recorder.drain()

        assert len(recorder.records) == 1
        assert recorder.records[0].status is UsageStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_failure_before_dispatch_costs_nothing(self):
        recorder = CountingRecorder(InMemoryStore())
        session = UsageSession(recorder, "u1", model="gpt-4o", input_tokens=300)

        session.fail(InferenceError(ErrorKind.RATE_LIMIT, "Rate limited", detail="slow down"))
        await recorder.drain()

        record = recorder.records[0]
        assert record.status is UsageStatus.ERROR
        assert record.error_code == "RATE_LIMIT"
        assert record.error_message == "Rate limited: slow down"
        assert record.output_tokens == 0
        assert record.input_cost == 0
        assert record.output_cost == 0

    @pytest.mark.asyncio
    async def test_update_ignored_after_finalize(self):
        recorder = CountingRecorder(InMemoryStore())
        session = UsageSession(recorder, "u1")
        session.update(provider="openai")
        session.succeed(0)
        session.update(provider="google")
        await recorder.drain()

        assert recorder.records[0].provider == "openai"
