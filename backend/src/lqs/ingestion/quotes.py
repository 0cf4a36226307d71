"""Quote feed ingestion.

A quote lands on the household for its name/zip key (created in quoted,
or advanced from lead). Quotes are identified by household, production
date and product type, so replaying a quote report updates in place.

Issued policy numbers are unique per agency and immutable. A quote that
arrives with a policy number another quote already holds is still
stored, with the number moved to conflicting_policy_number and a
data-quality warning on the row.
"""

from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..locks import household_lock_key, policy_lock_key, surname_lock_key
from ..logging import log_data_quality
from ..matching import (
    build_household_key,
    extract_sub_producer_code,
    normalize_name_part,
    normalize_product_type,
)
from ..models.results import BatchResult, RowResult, RowStatus
from ..models.rows import QuoteRow
from ..models.tables import Quote
from ..registry import HouseholdRegistry
from .base import BatchRunner

DUPLICATE_POLICY = "duplicate_policy_on_ingest"
POLICY_IMMUTABLE = "policy_number_immutable"


async def find_quote_by_policy(
    session: AsyncSession, agency_id: str, policy_number: str
) -> Quote | None:
    result = await session.execute(
        select(Quote).where(
            Quote.agency_id == agency_id,
            Quote.issued_policy_number == policy_number,
        )
    )
    return result.scalar_one_or_none()


async def ingest_quote(
    session: AsyncSession,
    agency_id: str,
    row: QuoteRow,
    row_index: int = 0,
) -> RowResult:
    """Record one quote and advance its household.

    Args:
        session: Session inside an open transaction
        agency_id: Owning agency
        row: Validated quote row
        row_index: Position in the batch, for the audit entry

    Returns:
        RowResult with status created or updated and any data-quality warnings
    """
    registry = HouseholdRegistry(session)
    key = build_household_key(row.last_name, row.first_name, row.zip)
    household, _ = await registry.upsert_from_quote(
        agency_id,
        key,
        row.production_date,
        first_name=row.first_name,
        last_name=row.last_name,
        zip_code=row.zip,
    )

    product_type = normalize_product_type(row.product).value
    sub_producer_code = extract_sub_producer_code(row.sub_producer)

    result = await session.execute(
        select(Quote).where(
            Quote.agency_id == agency_id,
            Quote.household_id == household.id,
            Quote.production_date == row.production_date,
            Quote.product_type == product_type,
        )
    )
    quote = result.scalar_one_or_none()

    warnings: list[str] = []
    policy_number = row.issued_policy_number
    storable_policy = policy_number

    if policy_number:
        holder = await find_quote_by_policy(session, agency_id, policy_number)
        if holder is not None and (quote is None or holder.id != quote.id):
            storable_policy = None
            warnings.append(
                f"{DUPLICATE_POLICY}: policy {policy_number} already held by quote {holder.id}"
            )
            log_data_quality(
                agency_id,
                DUPLICATE_POLICY,
                {
                    "policy_number": policy_number,
                    "holder_quote_id": str(holder.id),
                    "household_key": key,
                },
            )

    if quote is None:
        quote = Quote(
            agency_id=agency_id,
            household_id=household.id,
            issued_policy_number=storable_policy,
            conflicting_policy_number=policy_number if policy_number != storable_policy else None,
            product_type=product_type,
            product_raw=row.product,
            sub_producer_code=sub_producer_code,
            sub_producer_raw=row.sub_producer,
            premium_cents=row.premium_cents,
            production_date=row.production_date,
            address=row.address,
        )
        session.add(quote)
        status = RowStatus.CREATED
    else:
        quote.product_raw = row.product
        quote.sub_producer_code = sub_producer_code
        quote.sub_producer_raw = row.sub_producer
        quote.premium_cents = row.premium_cents
        if row.address:
            quote.address = row.address

        if policy_number and policy_number != quote.issued_policy_number:
            if quote.issued_policy_number is None and storable_policy:
                quote.issued_policy_number = storable_policy
            else:
                quote.conflicting_policy_number = policy_number
                if quote.issued_policy_number is not None:
                    warnings.append(
                        f"{POLICY_IMMUTABLE}: quote {quote.id} keeps "
                        f"{quote.issued_policy_number}, ignored {policy_number}"
                    )
                    log_data_quality(
                        agency_id,
                        POLICY_IMMUTABLE,
                        {
                            "quote_id": str(quote.id),
                            "issued_policy_number": quote.issued_policy_number,
                            "incoming_policy_number": policy_number,
                        },
                    )
        status = RowStatus.UPDATED

    await session.flush()

    return RowResult(
        row_index=row_index,
        status=status,
        household_id=household.id,
        quote_id=quote.id,
        warnings=warnings,
    )


class QuoteBatch(BatchRunner[QuoteRow]):
    """Batch of quotes for one agency."""

    kind = "quotes"
    row_model = QuoteRow

    def lock_keys(self, row: QuoteRow) -> Iterable[str | None]:
        key = build_household_key(row.last_name, row.first_name, row.zip)
        return [
            household_lock_key(self.agency_id, key),
            surname_lock_key(self.agency_id, normalize_name_part(row.last_name)),
            policy_lock_key(self.agency_id, row.issued_policy_number)
            if row.issued_policy_number
            else None,
        ]

    async def process_row(self, session: AsyncSession, row: QuoteRow, row_index: int) -> RowResult:
        return await ingest_quote(session, self.agency_id, row, row_index)


async def ingest_quotes(agency_id: str, rows: Sequence[Any], **kwargs: Any) -> BatchResult:
    """Ingest a batch of quotes.

    Args:
        agency_id: Owning agency
        rows: Quote rows (mappings or QuoteRow)
        **kwargs: BatchRunner options (session_factory, cancel_event, ...)

    Returns:
        BatchResult with one entry per row
    """
    return await QuoteBatch(agency_id, **kwargs).run(rows)
