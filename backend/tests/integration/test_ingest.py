"""Integration tests for lead and quote batches."""

import pytest
from sqlalchemy import func, select

from lqs.ingestion import ingest_leads, ingest_quotes
from lqs.models.tables import Household, HouseholdStatus, Quote

AGENCY = "AGENCY-ING"


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def load_household(session_factory, household_id) -> Household:
    async with session_factory() as session:
        return await session.get(Household, household_id)


class TestLeadBatch:
    """Tests for ingest_leads()."""

    @pytest.mark.asyncio
    async def test_create_then_update(self, runner_kwargs, session_factory, smith_lead):
        first = await ingest_leads(AGENCY, [smith_lead], lead_source="Web", **runner_kwargs)
        second = await ingest_leads(AGENCY, [smith_lead], lead_source="Web", **runner_kwargs)

        assert first.results[0].status == "created"
        assert second.results[0].status == "updated"
        assert first.results[0].household_id == second.results[0].household_id
        assert await count(session_factory, Household) == 1

        household = await load_household(session_factory, first.results[0].household_id)
        assert household.status == HouseholdStatus.LEAD.value
        assert household.lead_source == "Web"

    @pytest.mark.asyncio
    async def test_invalid_rows_are_skipped(self, runner_kwargs, smith_lead):
        bad = dict(smith_lead, received_date="someday")
        batch = await ingest_leads(AGENCY, [bad, smith_lead], **runner_kwargs)

        assert [r.status for r in batch.results] == ["skipped-invalid", "created"]
        assert "received_date" in batch.results[0].reason

    @pytest.mark.asyncio
    async def test_source_conflict_warning(self, runner_kwargs, smith_lead):
        await ingest_leads(AGENCY, [smith_lead], lead_source="Web", **runner_kwargs)
        batch = await ingest_leads(AGENCY, [smith_lead], lead_source="Referral", **runner_kwargs)

        assert batch.results[0].status == "updated"
        assert batch.results[0].warnings
        assert "Referral" in batch.results[0].warnings[0]

    @pytest.mark.asyncio
    async def test_row_source_overrides_batch_source(self, runner_kwargs, session_factory, smith_lead):
        row = dict(smith_lead, lead_source="Referral")
        batch = await ingest_leads(AGENCY, [row], lead_source="Web", **runner_kwargs)

        household = await load_household(session_factory, batch.results[0].household_id)
        assert household.lead_source == "Referral"


class TestQuoteBatch:
    """Tests for ingest_quotes()."""

    @pytest.mark.asyncio
    async def test_quote_without_lead_creates_quoted_household(
        self, runner_kwargs, session_factory, smith_quote
    ):
        batch = await ingest_quotes(AGENCY, [smith_quote], **runner_kwargs)
        result = batch.results[0]

        assert result.status == "created"
        household = await load_household(session_factory, result.household_id)
        assert household.status == HouseholdStatus.QUOTED.value

        async with session_factory() as session:
            quote = await session.get(Quote, result.quote_id)
        assert quote.product_type == "AUTO"
        assert quote.sub_producer_code == "112"
        assert quote.premium_cents == 120000
        assert quote.issued_policy_number == "POL123"

    @pytest.mark.asyncio
    async def test_quote_advances_lead(self, runner_kwargs, session_factory, smith_lead, smith_quote):
        leads = await ingest_leads(AGENCY, [smith_lead], **runner_kwargs)
        quotes = await ingest_quotes(AGENCY, [smith_quote], **runner_kwargs)

        assert quotes.results[0].household_id == leads.results[0].household_id
        household = await load_household(session_factory, leads.results[0].household_id)
        assert household.status == HouseholdStatus.QUOTED.value
        assert household.first_quote_date.isoformat() == "2024-01-10"

    @pytest.mark.asyncio
    async def test_replayed_quote_updates_in_place(self, runner_kwargs, session_factory, smith_quote):
        await ingest_quotes(AGENCY, [smith_quote], **runner_kwargs)
        batch = await ingest_quotes(AGENCY, [dict(smith_quote, premium="1250")], **runner_kwargs)

        assert batch.results[0].status == "updated"
        assert batch.results[0].warnings == []
        assert await count(session_factory, Quote) == 1

        async with session_factory() as session:
            quote = await session.get(Quote, batch.results[0].quote_id)
        assert quote.premium_cents == 125000

    @pytest.mark.asyncio
    async def test_duplicate_policy_number_is_kept_aside(
        self, runner_kwargs, session_factory, smith_quote
    ):
        other = dict(smith_quote, first_name="Jane", last_name="Doe")
        batch = await ingest_quotes(AGENCY, [smith_quote, other], **runner_kwargs)

        assert [r.status for r in batch.results] == ["created", "created"]
        assert batch.results[1].warnings
        assert batch.results[1].warnings[0].startswith("duplicate_policy_on_ingest")

        async with session_factory() as session:
            quote = await session.get(Quote, batch.results[1].quote_id)
        assert quote.issued_policy_number is None
        assert quote.conflicting_policy_number == "POL123"

    @pytest.mark.asyncio
    async def test_policy_number_is_immutable(self, runner_kwargs, session_factory, smith_quote):
        await ingest_quotes(AGENCY, [smith_quote], **runner_kwargs)
        batch = await ingest_quotes(
            AGENCY, [dict(smith_quote, issued_policy_number="POL999")], **runner_kwargs
        )

        result = batch.results[0]
        assert result.status == "updated"
        assert result.warnings[0].startswith("policy_number_immutable")

        async with session_factory() as session:
            quote = await session.get(Quote, result.quote_id)
        assert quote.issued_policy_number == "POL123"
        assert quote.conflicting_policy_number == "POL999"

    @pytest.mark.asyncio
    async def test_policy_number_filled_in_later(self, runner_kwargs, session_factory, smith_quote):
        await ingest_quotes(AGENCY, [dict(smith_quote, issued_policy_number=None)], **runner_kwargs)
        batch = await ingest_quotes(AGENCY, [smith_quote], **runner_kwargs)

        async with session_factory() as session:
            quote = await session.get(Quote, batch.results[0].quote_id)
        assert quote.issued_policy_number == "POL123"
        assert batch.results[0].warnings == []
