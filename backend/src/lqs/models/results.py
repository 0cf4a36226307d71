"""Result models returned by the batch entry points and the review queue."""

from collections import Counter
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RowStatus(str, Enum):
    """Audit status recorded for every input row."""

    CREATED = "created"
    UPDATED = "updated"
    MATCHED = "matched"
    FLAGGED = "flagged"
    UNCHANGED = "unchanged"
    SKIPPED_INVALID = "skipped-invalid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BatchStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


class RowResult(BaseModel):
    """Audit entry for one row of a batch."""

    model_config = ConfigDict(use_enum_values=True)

    row_index: int
    status: RowStatus
    reason: str | None = None
    household_id: UUID | None = None
    quote_id: UUID | None = None
    sale_id: UUID | None = None
    case_id: UUID | None = None
    warnings: list[str] = Field(default_factory=list)


class BatchResult(BaseModel):
    """Complete audit trail for one batch: one result per input row."""

    model_config = ConfigDict(use_enum_values=True)

    batch_id: UUID
    agency_id: str
    kind: str
    status: BatchStatus
    started_at: datetime
    completed_at: datetime
    results: list[RowResult] = Field(default_factory=list)
    error: str | None = None

    @property
    def counts(self) -> dict[str, int]:
        return dict(Counter(str(r.status) for r in self.results))

    def summary(self) -> dict[str, Any]:
        return {
            "batch_id": str(self.batch_id),
            "kind": self.kind,
            "status": self.status,
            "rows": len(self.results),
            "counts": self.counts,
        }


class CandidateScore(BaseModel):
    """A scored household candidate for a sale."""

    household_id: UUID
    household_key: str
    score: int
    reasons: list[str] = Field(default_factory=list)
    quote_id: UUID | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ResolveOutcome(BaseModel):
    """Result of resolving one sale, automatically or by a reviewer."""

    model_config = ConfigDict(use_enum_values=True)

    outcome: str
    sale_id: UUID
    household_id: UUID | None = None
    case_id: UUID | None = None
    method: str | None = None
    score: int | None = None
    reason: str | None = None
    replayed: bool = False


class ReviewCaseView(BaseModel):
    """Manual review case as presented to a reviewer."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    agency_id: str
    sale_id: UUID
    reason: str
    status: str
    candidates: list[CandidateScore]
    created_at: datetime
    resolved_at: datetime | None = None
    resolution: str | None = None
    resolved_by: str | None = None

    # Sale context for the reviewer
    sale_first_name: str | None = None
    sale_last_name: str | None = None
    sale_policy_number: str | None = None
    sale_product_type: str | None = None
    sale_premium_cents: int | None = None
    sale_issued_date: date | None = None
