"""Sale-to-quote scoring.

Each signal contributes a fixed number of points and a stable reason
string, so a score can always be explained to a reviewer:

    product_match          +40  same normalized product (UNKNOWN never matches)
    sub_producer_match     +35  same sub-producer code, both present
    premium_within_15pct   +25  |quote - sale| / quote <= 0.15
    quote_precedes_sale    +10  quote produced strictly before the sale issued
"""

from datetime import date
from typing import Iterable, Protocol
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .normalize import ProductType, extract_sub_producer_code, normalize_product_type

PRODUCT_POINTS = 40
SUB_PRODUCER_POINTS = 35
PREMIUM_POINTS = 25
TEMPORAL_POINTS = 10
MAX_SCORE = PRODUCT_POINTS + SUB_PRODUCER_POINTS + PREMIUM_POINTS + TEMPORAL_POINTS

PREMIUM_TOLERANCE_PCT = 15


class SaleLike(Protocol):
    product_type: str | None
    sub_producer_code: str | None
    premium_cents: int
    issued_date: date


class QuoteLike(Protocol):
    id: UUID | None
    product_type: str | None
    sub_producer_code: str | None
    premium_cents: int
    production_date: date


class MatchScore(BaseModel):
    """Points and contributing signals for one sale/quote pair."""

    model_config = ConfigDict(frozen=True)

    value: int = 0
    reasons: tuple[str, ...] = Field(default_factory=tuple)
    quote_id: UUID | None = None


def premium_within_tolerance(quote_cents: int, sale_cents: int) -> bool:
    """Check premium proximity in integer arithmetic (no float rounding)."""
    if quote_cents <= 0:
        return False
    return abs(quote_cents - sale_cents) * 100 <= PREMIUM_TOLERANCE_PCT * quote_cents


def score(sale: SaleLike, quote: QuoteLike) -> MatchScore:
    """Score how well a quote explains a sale.

    Args:
        sale: Sale facts (product, sub-producer, premium, issued date)
        quote: Quote facts (product, sub-producer, premium, production date)

    Returns:
        MatchScore with the total points and the signals that fired
    """
    value = 0
    reasons: list[str] = []

    sale_product = normalize_product_type(sale.product_type)
    quote_product = normalize_product_type(quote.product_type)
    if sale_product != ProductType.UNKNOWN and sale_product == quote_product:
        value += PRODUCT_POINTS
        reasons.append("product_match")

    sale_producer = extract_sub_producer_code(sale.sub_producer_code)
    quote_producer = extract_sub_producer_code(quote.sub_producer_code)
    if sale_producer is not None and sale_producer == quote_producer:
        value += SUB_PRODUCER_POINTS
        reasons.append("sub_producer_match")

    if premium_within_tolerance(quote.premium_cents, sale.premium_cents):
        value += PREMIUM_POINTS
        reasons.append("premium_within_15pct")

    if quote.production_date < sale.issued_date:
        value += TEMPORAL_POINTS
        reasons.append("quote_precedes_sale")

    if quote.id is not None:
        reasons.append(f"quote:{quote.id}")

    return MatchScore(value=value, reasons=tuple(reasons), quote_id=quote.id)


def score_household(sale: SaleLike, quotes: Iterable[QuoteLike]) -> MatchScore:
    """Score a household as its best-matching quote.

    Ties go to the most recent quote, then the lowest quote id, so the
    same inputs always pick the same quote.
    """
    best: MatchScore | None = None
    best_key: tuple | None = None
    for quote in quotes:
        result = score(sale, quote)
        key = (
            -result.value,
            -quote.production_date.toordinal(),
            str(quote.id) if quote.id is not None else "",
        )
        if best_key is None or key < best_key:
            best, best_key = result, key
    return best or MatchScore()
