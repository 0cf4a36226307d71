"""Domain exceptions for the LQS engine.

Row-level errors are turned into audit entries by the batch runner;
the API layer maps the rest onto structured HTTP errors.
"""

from typing import Any
from uuid import UUID


class LQSError(Exception):
    """Base class for all engine errors."""

    error_code = "LQS_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(LQSError):
    """A row is missing a required field or carries an unparsable value."""

    error_code = "VALIDATION_ERROR"


class InvalidTransition(LQSError):
    """A household status change would move backward or rewrite a sale."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, household_id: UUID, current: str, requested: str, detail: str = ""):
        self.household_id = household_id
        self.current = current
        self.requested = requested
        message = f"Household {household_id}: cannot move from {current} to {requested}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class HouseholdKeyConflict(LQSError):
    """A household with the same key already exists for the agency."""

    error_code = "HOUSEHOLD_KEY_CONFLICT"

    def __init__(self, household_key: str, existing_id: UUID):
        self.household_key = household_key
        self.existing_id = existing_id
        super().__init__(f"Household key {household_key} already used by {existing_id}")


class SaleAlreadyLinked(LQSError):
    """A sale's household link is permanent once set."""

    error_code = "SALE_ALREADY_LINKED"

    def __init__(self, sale_id: UUID, household_id: UUID):
        self.sale_id = sale_id
        self.household_id = household_id
        super().__init__(f"Sale {sale_id} is already linked to household {household_id}")


class CaseNotFound(LQSError):
    error_code = "CASE_NOT_FOUND"

    def __init__(self, case_id: UUID):
        self.case_id = case_id
        super().__init__(f"Manual review case not found: {case_id}")


class HouseholdNotFound(LQSError):
    error_code = "HOUSEHOLD_NOT_FOUND"

    def __init__(self, household_id: UUID | str):
        self.household_id = household_id
        super().__init__(f"Household not found: {household_id}")


class AlreadyResolved(LQSError):
    """A manual review case can only be resolved once."""

    error_code = "ALREADY_RESOLVED"

    def __init__(self, case_id: UUID, resolution: str | None):
        self.case_id = case_id
        self.resolution = resolution
        super().__init__(f"Manual review case {case_id} was already resolved ({resolution})")


class StorageError(LQSError):
    """The persistence layer failed while committing a row."""

    error_code = "STORAGE_ERROR"

    def __init__(self, message: str, original: Exception | None = None):
        self.original = original
        super().__init__(message)


class BatchAborted(LQSError):
    """A batch-wide storage failure stopped the run.

    Carries the rows that were already processed so the caller still
    gets a complete account of the batch.
    """

    error_code = "BATCH_ABORTED"

    def __init__(
        self,
        message: str,
        results: list[Any] | None = None,
        unprocessed: int = 0,
    ):
        self.results = results or []
        self.unprocessed = unprocessed
        super().__init__(message)

    @property
    def summary(self) -> dict[str, Any]:
        processed = len(self.results) - self.unprocessed
        return {
            "error": self.message,
            "processed_rows": processed,
            "unprocessed_rows": self.unprocessed,
        }
