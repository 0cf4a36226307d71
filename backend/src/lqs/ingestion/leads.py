"""Lead feed ingestion."""

from typing import Any, Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ..locks import household_lock_key
from ..matching import build_household_key
from ..models.results import BatchResult, RowResult, RowStatus
from ..models.rows import LeadRow
from ..registry import HouseholdRegistry
from .base import BatchRunner


async def ingest_lead(
    session: AsyncSession,
    agency_id: str,
    row: LeadRow,
    lead_source: str | None = None,
    row_index: int = 0,
) -> RowResult:
    """Create or update the household for one lead.

    Args:
        session: Session inside an open transaction
        agency_id: Owning agency
        row: Validated lead row
        lead_source: Lead source for rows that do not name their own
        row_index: Position in the batch, for the audit entry

    Returns:
        RowResult with status created or updated
    """
    registry = HouseholdRegistry(session)
    household, created = await registry.upsert_from_lead(agency_id, row, lead_source)

    warnings = []
    if household.needs_attention and household.conflicting_lead_source:
        warnings.append(
            f"lead source conflict: {household.lead_source} vs {household.conflicting_lead_source}"
        )

    return RowResult(
        row_index=row_index,
        status=RowStatus.CREATED if created else RowStatus.UPDATED,
        household_id=household.id,
        warnings=warnings,
    )


class LeadBatch(BatchRunner[LeadRow]):
    """Batch of leads for one agency."""

    kind = "leads"
    row_model = LeadRow

    def __init__(self, agency_id: str, lead_source: str | None = None, **kwargs: Any):
        super().__init__(agency_id, **kwargs)
        self.lead_source = lead_source

    def lock_keys(self, row: LeadRow) -> Iterable[str | None]:
        key = build_household_key(row.last_name, row.first_name, row.zip)
        return [household_lock_key(self.agency_id, key)]

    async def process_row(self, session: AsyncSession, row: LeadRow, row_index: int) -> RowResult:
        return await ingest_lead(session, self.agency_id, row, self.lead_source, row_index)


async def ingest_leads(
    agency_id: str,
    rows: Sequence[Any],
    lead_source: str | None = None,
    **kwargs: Any,
) -> BatchResult:
    """Ingest a batch of leads.

    Args:
        agency_id: Owning agency
        rows: Lead rows (mappings or LeadRow)
        lead_source: Source applied to rows without their own
        **kwargs: BatchRunner options (session_factory, cancel_event, ...)

    Returns:
        BatchResult with one entry per row
    """
    return await LeadBatch(agency_id, lead_source=lead_source, **kwargs).run(rows)
