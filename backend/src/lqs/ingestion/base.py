"""Batch runner shared by the lead, quote and sale feeds.

Every batch gives each row:
- validation into its pydantic row model (failures are skipped-invalid)
- exclusive keyed locks for the row's household/surname/policy keys
- its own transaction, retried with exponential backoff on storage errors
- a cancellation check before commit

and returns a complete audit trail with one RowResult per input row.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Iterable, Sequence, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..db import get_session_factory, verify_storage
from ..exceptions import BatchAborted, LQSError, StorageError, ValidationError
from ..locks import KeyedLockArena, get_lock_arena
from ..logging import get_context_logger, log_batch_complete, log_batch_start, log_row_result
from ..models.results import BatchResult, BatchStatus, RowResult, RowStatus

# Type variable for the validated row type
T = TypeVar("T", bound=BaseModel)


class RetryConfig(BaseModel):
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 0.2  # seconds
    max_delay: float = 5.0  # seconds
    exponential_base: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_retries=settings.storage_max_retries,
            base_delay=settings.storage_retry_base_delay,
            max_delay=settings.storage_retry_max_delay,
        )


async def with_retry(
    func,
    config: RetryConfig | None = None,
    logger=None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
):
    """Execute a function with exponential backoff retry.

    Args:
        func: Async function to execute
        config: Retry configuration
        logger: Optional logger for retry messages
        retry_on: Exception types worth retrying; anything else propagates at once

    Returns:
        Function result

    Raises:
        Exception: If all retries are exhausted
    """
    if config is None:
        config = RetryConfig()

    last_exception = None

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except retry_on as e:
            last_exception = e

            if attempt < config.max_retries:
                delay = min(
                    config.base_delay * (config.exponential_base ** attempt),
                    config.max_delay,
                )

                if logger:
                    logger.warning(
                        f"Attempt {attempt + 1} failed: {e}. "
                        f"Retrying in {delay:.1f}s"
                    )

                await asyncio.sleep(delay)
            else:
                if logger:
                    logger.error(
                        f"All {config.max_retries + 1} attempts failed"
                    )

    raise last_exception


class RowCancelled(Exception):
    """Raised inside a row transaction to roll it back on cancellation."""


def format_validation_error(error: PydanticValidationError) -> str:
    """Flatten a pydantic error into a one-line reason string."""
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()) if p != "__root__")
        message = item.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


class BatchRunner(ABC, Generic[T]):
    """Abstract base class for agency-scoped batch jobs.

    Subclasses name the row model, the lock keys a row needs and how a
    validated row is applied inside its transaction.
    """

    kind: str = "rows"
    row_model: type[T]

    def __init__(
        self,
        agency_id: str,
        *,
        session_factory: Callable[[], AsyncSession] | None = None,
        settings: Settings | None = None,
        lock_arena: KeyedLockArena | None = None,
        cancel_event: asyncio.Event | None = None,
        max_concurrency: int | None = None,
        retry: RetryConfig | None = None,
    ):
        """Initialize the runner.

        Args:
            agency_id: Agency every row belongs to
            session_factory: Session factory (defaults to the shared one)
            settings: Settings (defaults to get_settings())
            lock_arena: Keyed locks shared with concurrent batches
            cancel_event: Set to stop the batch at row granularity
            max_concurrency: Rows in flight at once
            retry: Storage retry policy
        """
        self.agency_id = agency_id
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.lock_arena = lock_arena or get_lock_arena()
        self.cancel_event = cancel_event or asyncio.Event()
        self.max_concurrency = max(1, max_concurrency or self.settings.batch_max_concurrency)
        self.retry = retry or RetryConfig.from_settings(self.settings)
        self.batch_id: UUID = uuid4()
        self._abort_error: StorageError | None = None
        self.logger = get_context_logger(
            f"lqs.ingestion.{self.kind}",
            agency_id=agency_id,
            batch_id=str(self.batch_id),
        )

    @abstractmethod
    def lock_keys(self, row: T) -> Iterable[str | None]:
        """Keys the row must hold exclusively while it runs."""
        ...

    @abstractmethod
    async def process_row(self, session: AsyncSession, row: T, row_index: int) -> RowResult:
        """Apply one validated row inside an open transaction.

        Args:
            session: Session with a transaction already begun
            row: Validated row
            row_index: Position of the row in the batch

        Returns:
            Row result (committed only if no exception escapes)
        """
        ...

    def cancel(self) -> None:
        """Request cancellation. Committed rows stay committed."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    async def verify_storage(self) -> None:
        """Check the schema and connection are usable."""
        await verify_storage(self.session_factory)

    async def run(self, rows: Sequence[Any]) -> BatchResult:
        """Run the batch.

        Args:
            rows: Raw row mappings or already-validated row models

        Returns:
            BatchResult with one entry per input row

        Raises:
            BatchAborted: If storage is unusable before or during the run
        """
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        batch_id = str(self.batch_id)
        log_batch_start(self.kind, batch_id, self.agency_id, len(rows))

        results: list[RowResult | None] = [None] * len(rows)

        try:
            await self.verify_storage()
        except StorageError as e:
            self._abort_error = e

        if self._abort_error is None:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def run_one(index: int, raw: Any) -> None:
                async with semaphore:
                    if self._abort_error is not None:
                        return
                    if self.cancelled:
                        results[index] = RowResult(
                            row_index=index,
                            status=RowStatus.CANCELLED,
                            reason="batch cancelled before row started",
                        )
                        return
                    results[index] = await self._run_row(index, raw)

            await asyncio.gather(*(run_one(i, raw) for i, raw in enumerate(rows)))

        unprocessed = 0
        for index, result in enumerate(results):
            if result is not None:
                continue
            unprocessed += 1
            results[index] = RowResult(
                row_index=index,
                status=RowStatus.FAILED,
                reason=f"batch aborted: {self._abort_error}",
            )

        final: list[RowResult] = [r for r in results if r is not None]
        if self._abort_error is not None:
            status = BatchStatus.ABORTED
        elif self.cancelled:
            status = BatchStatus.CANCELLED
        else:
            status = BatchStatus.COMPLETED

        batch = BatchResult(
            batch_id=self.batch_id,
            agency_id=self.agency_id,
            kind=self.kind,
            status=status,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            results=final,
            error=str(self._abort_error) if self._abort_error else None,
        )
        log_batch_complete(
            self.kind,
            batch_id,
            self.agency_id,
            status.value,
            batch.counts,
            time.monotonic() - start,
        )

        if self._abort_error is not None:
            self.logger.error(
                f"Batch aborted after {len(final) - unprocessed} rows: {self._abort_error}"
            )
            raise BatchAborted(
                f"{self.kind} batch {batch_id} aborted: {self._abort_error}",
                results=final,
                unprocessed=unprocessed,
            )

        return batch

    # =========================
    # Per-row execution
    # =========================

    def validate(self, raw: Any) -> T:
        if isinstance(raw, self.row_model):
            return raw
        try:
            return self.row_model.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(format_validation_error(e)) from e

    async def _run_row(self, index: int, raw: Any) -> RowResult:
        try:
            row = self.validate(raw)
        except ValidationError as e:
            return self._record(
                RowResult(row_index=index, status=RowStatus.SKIPPED_INVALID, reason=e.message)
            )

        async with self.lock_arena.hold(self.lock_keys(row)):
            try:
                result = await with_retry(
                    lambda: self._attempt(row, index),
                    self.retry,
                    self.logger,
                    retry_on=(StorageError,),
                )
            except RowCancelled:
                result = RowResult(
                    row_index=index,
                    status=RowStatus.CANCELLED,
                    reason="batch cancelled before commit; row rolled back",
                )
            except StorageError as e:
                result = RowResult(
                    row_index=index,
                    status=RowStatus.FAILED,
                    reason=f"storage error after {self.retry.max_retries + 1} attempts: {e}",
                )
                await self._check_health()
            except ValidationError as e:
                result = RowResult(
                    row_index=index, status=RowStatus.SKIPPED_INVALID, reason=e.message
                )
            except LQSError as e:
                result = RowResult(
                    row_index=index,
                    status=RowStatus.FAILED,
                    reason=f"{e.error_code}: {e.message}",
                )

        return self._record(result)

    async def _attempt(self, row: T, index: int) -> RowResult:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    result = await self.process_row(session, row, index)
                    if self.cancelled:
                        raise RowCancelled()
            except SQLAlchemyError as e:
                raise StorageError(f"{type(e).__name__}: {e}", original=e) from e
        return result

    async def _check_health(self) -> None:
        """After a row exhausts its retries, decide whether the whole batch must stop."""
        if self._abort_error is not None:
            return
        try:
            await self.verify_storage()
        except StorageError as e:
            self._abort_error = e

    def _record(self, result: RowResult) -> RowResult:
        log_row_result(
            self.kind,
            str(self.batch_id),
            result.row_index,
            str(result.status),
            result.reason or ("; ".join(result.warnings) if result.warnings else None),
        )
        return result
