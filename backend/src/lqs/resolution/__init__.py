"""Sale resolution and the manual review queue."""

from .resolver import SaleBatch, SaleResolver, ingest_sales, rank_candidates, sale_fingerprint
from .review import ManualReviewQueue, parse_decision

__all__ = [
    "ManualReviewQueue",
    "SaleBatch",
    "SaleResolver",
    "ingest_sales",
    "parse_decision",
    "rank_candidates",
    "sale_fingerprint",
]
