"""ORM tables for households, quotes, sales and manual review cases."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HouseholdStatus(str, Enum):
    """Household lifecycle. Transitions only move forward."""

    LEAD = "lead"
    QUOTED = "quoted"
    SOLD = "sold"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    HouseholdStatus.LEAD: 0,
    HouseholdStatus.QUOTED: 1,
    HouseholdStatus.SOLD: 2,
}


class SaleStatus(str, Enum):
    PENDING = "pending"
    LINKED = "linked"


class SaleOutcome(str, Enum):
    MATCHED = "matched"
    FLAGGED = "flagged"
    CREATED = "created"


class MatchMethod(str, Enum):
    """How a sale ended up linked to its household."""

    POLICY_NUMBER = "policy_number"
    SCORED = "scored"
    HOUSEHOLD_KEY = "household_key"
    ONE_CALL_CLOSE = "one_call_close"
    MANUAL = "manual"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ReviewReason(str, Enum):
    POLICY_NUMBER_CONFLICT = "policy_number_conflict"
    AMBIGUOUS_CANDIDATES = "ambiguous_candidates"
    FIRST_NAME_MISMATCH = "first_name_mismatch"


class Household(Base):
    """Canonical record for one prospect within an agency."""

    __tablename__ = "households"
    __table_args__ = (
        UniqueConstraint("agency_id", "household_key", name="agency_household_key"),
        Index("ix_households_agency_last_name", "agency_id", "last_name_normalized"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[str] = mapped_column(String(64), nullable=False)
    household_key: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(255))
    last_name: Mapped[str | None] = mapped_column(String(255))
    last_name_normalized: Mapped[str] = mapped_column(String(255), nullable=False)
    zip_code: Mapped[str | None] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    lead_received_date: Mapped[date | None] = mapped_column(Date)
    first_quote_date: Mapped[date | None] = mapped_column(Date)
    sold_date: Mapped[date | None] = mapped_column(Date)
    lead_source: Mapped[str | None] = mapped_column(String(255))
    phones: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    email: Mapped[str | None] = mapped_column(String(320))
    needs_attention: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attention_reason: Mapped[str | None] = mapped_column(String(64))
    conflicting_lead_source: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Household {self.household_key} {self.status}>"


class Quote(Base):
    """A quote event owned by one household."""

    __tablename__ = "quotes"
    __table_args__ = (
        UniqueConstraint("agency_id", "issued_policy_number", name="agency_policy_number"),
        UniqueConstraint(
            "agency_id",
            "household_id",
            "production_date",
            "product_type",
            name="natural_key",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[str] = mapped_column(String(64), nullable=False)
    household_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False, index=True
    )
    issued_policy_number: Mapped[str | None] = mapped_column(String(100))
    conflicting_policy_number: Mapped[str | None] = mapped_column(String(100))
    product_type: Mapped[str] = mapped_column(String(20), nullable=False)
    product_raw: Mapped[str | None] = mapped_column(String(255))
    sub_producer_code: Mapped[str | None] = mapped_column(String(100))
    sub_producer_raw: Mapped[str | None] = mapped_column(String(255))
    premium_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    production_date: Mapped[date] = mapped_column(Date, nullable=False)
    address: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Sale(Base):
    """An issued sale. household_id is written once, by the linking primitives."""

    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint("agency_id", "fingerprint", name="agency_fingerprint"),
        Index("ix_sales_agency_policy_number", "agency_id", "policy_number"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[str] = mapped_column(String(64), nullable=False)
    household_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("households.id"), index=True
    )
    quote_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("quotes.id"))
    policy_number: Mapped[str | None] = mapped_column(String(100))
    first_name: Mapped[str | None] = mapped_column(String(255))
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    zip_code: Mapped[str | None] = mapped_column(String(20))
    product_type: Mapped[str] = mapped_column(String(20), nullable=False)
    product_raw: Mapped[str | None] = mapped_column(String(255))
    sub_producer_code: Mapped[str | None] = mapped_column(String(100))
    premium_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    issued_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SaleStatus.PENDING.value)
    outcome: Mapped[str | None] = mapped_column(String(20))
    match_method: Mapped[str | None] = mapped_column(String(30))
    match_score: Mapped[int | None] = mapped_column(Integer)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    linked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ManualReviewCase(Base):
    """A sale the resolver would not link on its own."""

    __tablename__ = "manual_review_cases"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sale_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("sales.id"), nullable=False, unique=True
    )
    reason: Mapped[str] = mapped_column(String(40), nullable=False)
    candidates: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReviewStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resolution: Mapped[str | None] = mapped_column(String(64))
    resolved_by: Mapped[str | None] = mapped_column(String(255))
