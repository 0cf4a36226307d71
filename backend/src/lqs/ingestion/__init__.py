"""Batch ingestion for the lead and quote feeds."""

from .base import BatchRunner, RetryConfig, with_retry
from .leads import LeadBatch, ingest_lead, ingest_leads
from .quotes import QuoteBatch, ingest_quote, ingest_quotes

__all__ = [
    "BatchRunner",
    "LeadBatch",
    "QuoteBatch",
    "RetryConfig",
    "ingest_lead",
    "ingest_leads",
    "ingest_quote",
    "ingest_quotes",
    "with_retry",
]
