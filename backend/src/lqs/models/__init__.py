"""Persistent tables, input row schemas and result models."""

from .results import (
    BatchResult,
    BatchStatus,
    CandidateScore,
    ResolveOutcome,
    ReviewCaseView,
    RowResult,
    RowStatus,
)
from .rows import LeadRow, QuoteRow, SaleRow, parse_cents, parse_date, split_customer_name
from .tables import (
    Household,
    HouseholdStatus,
    ManualReviewCase,
    MatchMethod,
    Quote,
    ReviewReason,
    ReviewStatus,
    Sale,
    SaleOutcome,
    SaleStatus,
)

__all__ = [
    "BatchResult",
    "BatchStatus",
    "CandidateScore",
    "Household",
    "HouseholdStatus",
    "LeadRow",
    "ManualReviewCase",
    "MatchMethod",
    "Quote",
    "QuoteRow",
    "ResolveOutcome",
    "ReviewCaseView",
    "ReviewReason",
    "ReviewStatus",
    "RowResult",
    "RowStatus",
    "Sale",
    "SaleOutcome",
    "SaleRow",
    "parse_cents",
    "parse_date",
    "split_customer_name",
]
