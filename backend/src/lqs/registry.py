"""Canonical household store for LQS.

The registry owns household creation and every status change. Status
only moves forward (lead -> quoted -> sold) and a household may be born
directly into quoted (quote with no prior lead) or sold (one-call close).
All writes go through the caller's session; the caller owns the
transaction.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .exceptions import HouseholdKeyConflict, InvalidTransition
from .logging import get_context_logger
from .matching import build_household_key, merge_phones, normalize_name_part
from .models.rows import LeadRow
from .models.tables import Household, HouseholdStatus, Quote

logger = get_context_logger(__name__)

SOURCE_CONFLICT = "source_conflict"


class HouseholdRegistry:
    """Household lookups, upserts and state transitions.

    Provides methods for:
    - Upserting households from leads and quotes
    - Moving households to sold
    - Creating one-call-close households
    - Finding scoring candidates by surname
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    # =========================
    # Lookups
    # =========================

    async def get(self, household_id: UUID) -> Household | None:
        return await self.session.get(Household, household_id)

    async def get_by_key(self, agency_id: str, household_key: str) -> Household | None:
        result = await self.session.execute(
            select(Household).where(
                Household.agency_id == agency_id,
                Household.household_key == household_key,
            )
        )
        return result.scalar_one_or_none()

    async def find_candidates_by_last_name(
        self,
        agency_id: str,
        last_name: str,
    ) -> list[Household]:
        """Find households sharing a surname that have quote history.

        Matching is exact on the normalized surname: no initials, no
        substrings, no edit distance.

        Args:
            agency_id: Agency to search within
            last_name: Surname as it appears on the sale

        Returns:
            Households in any status, ordered by household key
        """
        normalized = normalize_name_part(last_name)
        if not normalized:
            return []

        has_quote = exists().where(Quote.household_id == Household.id)
        result = await self.session.execute(
            select(Household)
            .where(
                Household.agency_id == agency_id,
                Household.last_name_normalized == normalized,
                has_quote,
            )
            .order_by(Household.household_key)
        )
        return list(result.scalars().all())

    async def quotes_for(self, household_ids: Iterable[UUID]) -> dict[UUID, list[Quote]]:
        """Load the quotes of several households, grouped by household."""
        ids = list(household_ids)
        grouped: dict[UUID, list[Quote]] = defaultdict(list)
        if not ids:
            return grouped

        result = await self.session.execute(
            select(Quote)
            .where(Quote.household_id.in_(ids))
            .order_by(Quote.production_date, Quote.id)
        )
        for quote in result.scalars():
            grouped[quote.household_id].append(quote)
        return grouped

    # =========================
    # Upserts
    # =========================

    async def upsert_from_lead(
        self,
        agency_id: str,
        lead: LeadRow,
        lead_source: str | None = None,
    ) -> tuple[Household, bool]:
        """Create or update a household from a lead.

        A new household starts in ``lead``. An existing one only has its
        contact details merged; status and milestone dates never change.
        A lead source that disagrees with the one already recorded is
        kept aside and the household is flagged for attention.

        Args:
            agency_id: Owning agency
            lead: Validated lead row
            lead_source: Batch-level lead source, overridden by the row's own

        Returns:
            (household, created)
        """
        source = lead.lead_source or lead_source
        key = build_household_key(lead.last_name, lead.first_name, lead.zip)
        household = await self.get_by_key(agency_id, key)

        if household is None:
            household = Household(
                agency_id=agency_id,
                household_key=key,
                first_name=lead.first_name,
                last_name=lead.last_name,
                last_name_normalized=normalize_name_part(lead.last_name),
                zip_code=lead.zip,
                status=HouseholdStatus.LEAD.value,
                lead_received_date=lead.received_date,
                lead_source=source,
                phones=merge_phones([], lead.phone),
                email=lead.email,
                needs_attention=False,
            )
            self.session.add(household)
            await self.session.flush()
            return household, True

        phones = merge_phones(household.phones, lead.phone)
        if phones != list(household.phones or []):
            household.phones = phones
        if lead.email and not household.email:
            household.email = lead.email

        if source:
            if not household.lead_source:
                household.lead_source = source
            elif household.lead_source != source:
                household.needs_attention = True
                household.attention_reason = SOURCE_CONFLICT
                household.conflicting_lead_source = source
                logger.info(
                    f"Lead source conflict on {key}: "
                    f"{household.lead_source!r} vs {source!r}"
                )

        await self.session.flush()
        return household, False

    async def upsert_from_quote(
        self,
        agency_id: str,
        household_key: str,
        quote_date: date,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        zip_code: str | None = None,
    ) -> tuple[Household, bool]:
        """Create or advance a household for a quote.

        Returns:
            (household, created)
        """
        household = await self.get_by_key(agency_id, household_key)

        if household is None:
            household = Household(
                agency_id=agency_id,
                household_key=household_key,
                first_name=first_name,
                last_name=last_name,
                last_name_normalized=normalize_name_part(last_name),
                zip_code=zip_code,
                status=HouseholdStatus.QUOTED.value,
                lead_received_date=quote_date,
                first_quote_date=quote_date,
                phones=[],
                needs_attention=False,
            )
            self.session.add(household)
            await self.session.flush()
            return household, True

        if household.status == HouseholdStatus.LEAD.value:
            self._advance(household, HouseholdStatus.QUOTED)
            if household.first_quote_date is None:
                household.first_quote_date = quote_date
            await self.session.flush()

        return household, False

    # =========================
    # Transitions
    # =========================

    def _advance(self, household: Household, target: HouseholdStatus) -> None:
        current = HouseholdStatus(household.status)
        if target.rank < current.rank:
            raise InvalidTransition(household.id, current.value, target.value)
        household.status = target.value

    async def transition_to_sold(self, household: Household, sold_date: date) -> bool:
        """Move a household to ``sold``.

        Replaying the same sold date is a no-op. A household already sold
        on a different date was claimed by another sale and is never
        rewritten.

        Returns:
            True if the household changed

        Raises:
            InvalidTransition: If the household is sold with another date
        """
        if household.status == HouseholdStatus.SOLD.value:
            if household.sold_date == sold_date:
                return False
            raise InvalidTransition(
                household.id,
                HouseholdStatus.SOLD.value,
                HouseholdStatus.SOLD.value,
                detail=f"already sold on {household.sold_date}, not {sold_date}",
            )

        self._advance(household, HouseholdStatus.SOLD)
        household.sold_date = sold_date
        await self.session.flush()
        return True

    async def create_sold_household(
        self,
        agency_id: str,
        *,
        first_name: str | None,
        last_name: str | None,
        zip_code: str | None,
        sale_date: date,
    ) -> Household:
        """Create a household born sold (one-call close).

        Raises:
            HouseholdKeyConflict: If the household key is already taken
        """
        key = build_household_key(last_name, first_name, zip_code)
        existing = await self.get_by_key(agency_id, key)
        if existing is not None:
            raise HouseholdKeyConflict(key, existing.id)

        household = Household(
            agency_id=agency_id,
            household_key=key,
            first_name=first_name,
            last_name=last_name,
            last_name_normalized=normalize_name_part(last_name),
            zip_code=zip_code,
            status=HouseholdStatus.SOLD.value,
            lead_received_date=sale_date,
            first_quote_date=sale_date,
            sold_date=sale_date,
            lead_source=self.settings.one_call_close_lead_source,
            phones=[],
            needs_attention=False,
        )
        self.session.add(household)
        await self.session.flush()
        return household
