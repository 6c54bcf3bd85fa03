# Usage ledger writer
# services/usage_recorder.py
"""
Best-effort usage accounting.

``UsageRecorder.record`` detaches the ledger insert into its own task and
swallows (but logs) every failure, so a ledger outage can never change a
chat response. ``UsageSession`` carries one pending record through a
request and finalizes it exactly once.
"""

import asyncio
import time
from typing import Any, Optional, Set
import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from models.usage import UsageRecord, UsageStatus
from middleware.metrics import MetricsCollector
from services.token_estimator import calculate_cost
from utils.config import settings
from utils.errors import InferenceError


logger = structlog.get_logger()


class UsageRecorder:
    """
    Fire-and-forget writer for the append-only usage ledger.
    Pending writes are tracked so they are not garbage collected mid-flight
    and can be awaited on shutdown.
    """

    def __init__(self, ledger, max_attempts: Optional[int] = None):
        self.ledger = ledger
        self.max_attempts = max(1, max_attempts or settings.usage_write_attempts)
        self._tasks: Set[asyncio.Task] = set()
        self.logger = logger.bind(service="UsageRecorder")

    @property
    def pending_writes(self) -> int:
        return len(self._tasks)

    def record(self, usage: UsageRecord) -> None:
        """Schedule the ledger insert and return immediately"""

        MetricsCollector.record_usage(usage)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.error("No running event loop, usage record dropped",
                              user_id=usage.user_id,
                              status=usage.status.value)
            MetricsCollector.record_usage_write_failure()
            return

        task = loop.create_task(self._write(usage))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write(self, usage: UsageRecord) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.1, max=2),
                reraise=True
            ):
                with attempt:
                    await self.ledger.insert(usage)

        except Exception as e:
            self.logger.error("Failed to log AI usage",
                              error=str(e),
                              user_id=usage.user_id,
                              swarm_id=usage.swarm_id,
                              status=usage.status.value)
            MetricsCollector.record_usage_write_failure()

    async def drain(self) -> None:
        """Wait for every scheduled write to settle"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class UsageSession:
    """
    One pending usage record and its clock.

    Fields may be filled in while the record is pending; ``succeed`` or
    ``fail`` then finalizes it and hands it to the recorder. Later
    finalization attempts are ignored.
    """

    def __init__(self, recorder: UsageRecorder, user_id: str, **fields: Any):
        self.recorder = recorder
        self.record = UsageRecord(user_id=user_id, status=UsageStatus.PENDING, **fields)
        self.started_at = time.monotonic()
        self._finalized = False
        self.logger = logger.bind(service="UsageSession", user_id=user_id)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def update(self, **fields: Any) -> None:
        if self._finalized:
            return
        for key, value in fields.items():
            setattr(self.record, key, value)

    def succeed(self, output_tokens: int) -> bool:
        return self._finalize(UsageStatus.SUCCESS, output_tokens, billable=True)

    def fail(
        self,
        error: InferenceError,
        output_tokens: int = 0,
        billable: bool = False
    ) -> bool:
        """
        Mark the call failed. ``billable`` is set when the provider already
        consumed the prompt (failures after the stream started).
        """
        return self._finalize(
            UsageStatus.ERROR,
            output_tokens,
            billable=billable,
            error_code=error.code,
            error_message=error.ledger_message
        )

    def _finalize(
        self,
        status: UsageStatus,
        output_tokens: int,
        billable: bool,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> bool:
        if self._finalized:
            self.logger.warning("Usage record already finalized",
                                status=self.record.status.value,
                                attempted_status=status.value)
            return False
        self._finalized = True

        record = self.record
        record.status = status
        record.output_tokens = output_tokens
        record.latency_ms = int((time.monotonic() - self.started_at) * 1000)
        record.error_code = error_code
        record.error_message = error_message

        if billable:
            cost = calculate_cost(record.model or "", record.input_tokens, output_tokens)
            record.input_cost = cost.input_cost
            record.output_cost = cost.output_cost
        else:
            record.input_cost = 0.0
            record.output_cost = 0.0

        self.recorder.record(record)
        return True
