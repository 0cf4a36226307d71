"""Unit tests for the batch runner.

Uses an in-memory fake session so retry, cancellation and abort paths
can be driven without a database.
"""

import asyncio
from collections import defaultdict

import pytest
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError

from lqs.exceptions import BatchAborted, InvalidTransition, StorageError
from lqs.ingestion.base import BatchRunner, RetryConfig, with_retry
from lqs.locks import KeyedLockArena
from lqs.models.results import BatchStatus, RowResult, RowStatus


class FakeStore:
    def __init__(self):
        self.committed: list[int] = []
        self.attempts: dict[int, int] = defaultdict(int)
        self.healthy = True
        self.in_flight = 0
        self.max_in_flight = 0


class FakeTransaction:
    def __init__(self, session: "FakeSession"):
        self.session = session

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.session.store.committed.extend(self.session.pending)
        self.session.pending = []
        return False


class FakeSession:
    def __init__(self, store: FakeStore):
        self.store = store
        self.pending: list[int] = []

    def begin(self):
        return FakeTransaction(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class EchoRow(BaseModel):
    value: int
    fail_times: int = 0
    break_storage: bool = False
    cancel: bool = False
    conflict: bool = False
    delay: float = 0.0


class EchoBatch(BatchRunner[EchoRow]):
    kind = "echo"
    row_model = EchoRow

    def __init__(self, store: FakeStore, **kwargs):
        super().__init__("AGENCY-T", session_factory=lambda: FakeSession(store), **kwargs)
        self.store = store

    async def verify_storage(self) -> None:
        if not self.store.healthy:
            raise StorageError("database unreachable")

    def lock_keys(self, row: EchoRow):
        return [f"echo:{row.value}"]

    async def process_row(self, session, row: EchoRow, row_index: int) -> RowResult:
        self.store.attempts[row_index] += 1
        self.store.in_flight += 1
        self.store.max_in_flight = max(self.store.max_in_flight, self.store.in_flight)
        try:
            if row.delay:
                await asyncio.sleep(row.delay)
            if row.break_storage:
                self.store.healthy = False
            if self.store.attempts[row_index] <= row.fail_times or row.break_storage:
                raise OperationalError("INSERT", {}, Exception("connection reset"))
            if row.conflict:
                raise InvalidTransition("hh-1", "sold", "sold", detail="already sold")
            if row.cancel:
                self.cancel()
            session.pending.append(row_index)
        finally:
            self.store.in_flight -= 1
        return RowResult(row_index=row_index, status=RowStatus.CREATED)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def make_batch(store, settings):
    def factory(**kwargs) -> EchoBatch:
        kwargs.setdefault("max_concurrency", 1)
        kwargs.setdefault("retry", RetryConfig(max_retries=2, base_delay=0.0, max_delay=0.0))
        return EchoBatch(store, settings=settings, lock_arena=KeyedLockArena(), **kwargs)

    return factory


class TestBatchRunner:
    """Tests for BatchRunner.run()."""

    @pytest.mark.asyncio
    async def test_one_result_per_row_in_input_order(self, make_batch, store):
        rows = [{"value": i, "delay": 0.01 * (5 - i)} for i in range(5)]
        batch = await make_batch(max_concurrency=5).run(rows)

        assert batch.status == BatchStatus.COMPLETED
        assert [r.row_index for r in batch.results] == [0, 1, 2, 3, 4]
        assert batch.counts == {"created": 5}
        assert sorted(store.committed) == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_invalid_rows_are_skipped(self, make_batch, store):
        batch = await make_batch().run([{"value": 1}, {"value": "not a number"}, {}])

        statuses = [r.status for r in batch.results]
        assert statuses == ["created", "skipped-invalid", "skipped-invalid"]
        assert "value" in batch.results[1].reason
        assert store.committed == [0]

    @pytest.mark.asyncio
    async def test_storage_error_is_retried(self, make_batch, store):
        batch = await make_batch().run([{"value": 1, "fail_times": 2}])

        assert batch.results[0].status == "created"
        assert store.attempts[0] == 3
        assert store.committed == [0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_row_and_continue(self, make_batch, store):
        batch = await make_batch().run([{"value": 1, "fail_times": 10}, {"value": 2}])

        assert batch.status == BatchStatus.COMPLETED
        assert batch.results[0].status == "failed"
        assert "storage error after 3 attempts" in batch.results[0].reason
        assert batch.results[1].status == "created"
        assert store.committed == [1]

    @pytest.mark.asyncio
    async def test_unhealthy_storage_aborts_batch(self, make_batch, store):
        rows = [{"value": 1, "break_storage": True}, {"value": 2}, {"value": 3}]

        with pytest.raises(BatchAborted) as exc_info:
            await make_batch().run(rows)

        error = exc_info.value
        assert error.unprocessed == 2
        assert len(error.results) == 3
        assert error.results[0].status == "failed"
        assert all(r.reason.startswith("batch aborted") for r in error.results[1:])
        assert error.summary["processed_rows"] == 1
        assert store.committed == []

    @pytest.mark.asyncio
    async def test_preflight_failure_aborts_before_any_row(self, make_batch, store):
        store.healthy = False

        with pytest.raises(BatchAborted) as exc_info:
            await make_batch().run([{"value": 1}, {"value": 2}])

        assert exc_info.value.unprocessed == 2
        assert store.attempts == {}

    @pytest.mark.asyncio
    async def test_cancellation_keeps_committed_rows(self, make_batch, store):
        rows = [{"value": 0}, {"value": 1, "cancel": True}, {"value": 2}, {"value": 3}]
        batch = await make_batch().run(rows)

        assert batch.status == BatchStatus.CANCELLED
        assert [r.status for r in batch.results] == [
            "created",
            "cancelled",
            "cancelled",
            "cancelled",
        ]
        assert "rolled back" in batch.results[1].reason
        assert batch.results[2].reason == "batch cancelled before row started"
        assert store.committed == [0]

    @pytest.mark.asyncio
    async def test_domain_error_fails_row(self, make_batch, store):
        batch = await make_batch().run([{"value": 1, "conflict": True}])

        assert batch.results[0].status == "failed"
        assert batch.results[0].reason.startswith("INVALID_TRANSITION: ")
        assert store.committed == []

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, make_batch, store):
        rows = [{"value": i, "delay": 0.01} for i in range(6)]
        await make_batch(max_concurrency=2).run(rows)

        assert store.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_accepts_validated_models(self, make_batch, store):
        batch = await make_batch().run([EchoRow(value=7)])
        assert batch.results[0].status == "created"


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await with_retry(flaky, RetryConfig(max_retries=3, base_delay=0.0), retry_on=(StorageError,))
        assert calls == 1

    @pytest.mark.asyncio
    async def test_returns_after_transient_failure(self):
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise StorageError("timeout")
            return "ok"

        result = await with_retry(flaky, RetryConfig(max_retries=1, base_delay=0.0), retry_on=(StorageError,))
        assert result == "ok"
        assert calls == 2
