"""Integration tests for the manual review queue."""

import asyncio
from uuid import uuid4

import pytest
import pytest_asyncio

from lqs.exceptions import AlreadyResolved, CaseNotFound, HouseholdNotFound, ValidationError
from lqs.ingestion import ingest_leads, ingest_quotes
from lqs.locks import case_lock_key, household_lock_key
from lqs.models.tables import Household, HouseholdStatus, MatchMethod, Sale
from lqs.resolution import ManualReviewQueue, ingest_sales, parse_decision

AGENCY = "AGENCY-REV"
OTHER_AGENCY = "AGENCY-REV-2"

BROWN_QUOTES = [
    {
        "first_name": first,
        "last_name": "Brown",
        "zip": zip_code,
        "product": "HOME",
        "premium": 1000,
        "sub_producer": "112",
        "production_date": "2024-01-15",
    }
    for first, zip_code in (("Ann", "11111"), ("Bob", "22222"))
]


def brown_sale(first_name: str = "CAROL") -> dict:
    return {
        "customer_name": f"BROWN, {first_name}",
        "product": "HOME",
        "premium": 1000,
        "sub_producer": "112",
        "issued_date": "2024-02-20",
    }


@pytest.fixture
def queue(session_factory, settings, lock_arena) -> ManualReviewQueue:
    return ManualReviewQueue(session_factory, settings, lock_arena)


@pytest_asyncio.fixture
async def flagged(runner_kwargs):
    """Two tied Brown households and one ambiguous sale."""
    quotes = await ingest_quotes(AGENCY, BROWN_QUOTES, **runner_kwargs)
    sales = await ingest_sales(AGENCY, [brown_sale()], **runner_kwargs)
    assert sales.results[0].status == "flagged"
    return {
        "case_id": sales.results[0].case_id,
        "sale_id": sales.results[0].sale_id,
        "ann": quotes.results[0],
        "bob": quotes.results[1],
    }


class TestParseDecision:
    def test_new(self):
        assert parse_decision(" NEW ") is None

    def test_household_id(self):
        household_id = uuid4()
        assert parse_decision(str(household_id)) == household_id

    def test_garbage(self):
        with pytest.raises(ValidationError):
            parse_decision("maybe")


class TestListAndGet:
    @pytest.mark.asyncio
    async def test_list_pending_oldest_first(self, queue, runner_kwargs, flagged):
        later = await ingest_sales(AGENCY, [brown_sale("DAVE")], **runner_kwargs)

        cases = await queue.list_pending(AGENCY)

        assert [c.id for c in cases] == [flagged["case_id"], later.results[0].case_id]
        assert cases[0].sale_last_name == "BROWN"
        assert cases[0].sale_premium_cents == 100000
        assert await queue.list_pending(AGENCY, limit=1) == cases[:1]
        assert await queue.list_pending(OTHER_AGENCY) == []

    @pytest.mark.asyncio
    async def test_get_case(self, queue, flagged):
        case = await queue.get_case(flagged["case_id"])

        assert case.reason == "ambiguous_candidates"
        assert case.status == "pending"
        assert [c.household_key for c in case.candidates] == [
            "BROWN_ANN_11111",
            "BROWN_BOB_22222",
        ]
        assert case.sale_first_name == "CAROL"

    @pytest.mark.asyncio
    async def test_get_missing_case(self, queue):
        with pytest.raises(CaseNotFound):
            await queue.get_case(uuid4())


class TestResolve:
    """Tests for ManualReviewQueue.resolve()."""

    @pytest.mark.asyncio
    async def test_resolve_to_candidate(self, queue, session_factory, flagged):
        bob = flagged["bob"]
        outcome = await queue.resolve(flagged["case_id"], str(bob.household_id), resolved_by="alice")

        assert outcome.outcome == "matched"
        assert outcome.method == "manual"
        assert outcome.household_id == bob.household_id
        assert outcome.case_id == flagged["case_id"]
        assert outcome.score == 110

        async with session_factory() as session:
            sale = await session.get(Sale, flagged["sale_id"])
            household = await session.get(Household, bob.household_id)
        assert sale.household_id == bob.household_id
        assert sale.quote_id == bob.quote_id
        assert household.status == HouseholdStatus.SOLD.value
        assert household.sold_date.isoformat() == "2024-02-20"

        case = await queue.get_case(flagged["case_id"])
        assert case.status == "resolved"
        assert case.resolution == str(bob.household_id)
        assert case.resolved_by == "alice"
        assert await queue.list_pending(AGENCY) == []

    @pytest.mark.asyncio
    async def test_resolve_to_new_household(self, queue, session_factory, flagged):
        outcome = await queue.resolve(flagged["case_id"], "new")

        assert outcome.outcome == "created"
        assert outcome.method == "manual"
        async with session_factory() as session:
            household = await session.get(Household, outcome.household_id)
        assert household.household_key == "BROWN_CAROL_NOZIP"
        assert household.status == HouseholdStatus.SOLD.value

        case = await queue.get_case(flagged["case_id"])
        assert case.resolution == "new"

    @pytest.mark.asyncio
    async def test_new_onto_taken_key_stays_manual(self, queue, runner_kwargs, session_factory, flagged):
        leads = await ingest_leads(
            AGENCY,
            [{"first_name": "Carol", "last_name": "Brown", "received_date": "2024-01-02"}],
            **runner_kwargs,
        )
        lead_household_id = leads.results[0].household_id

        outcome = await queue.resolve(flagged["case_id"], "new")

        assert outcome.outcome == "matched"
        assert outcome.method == "manual"
        assert outcome.household_id == lead_household_id

        async with session_factory() as session:
            sale = await session.get(Sale, flagged["sale_id"])
        assert sale.household_id == lead_household_id
        assert sale.match_method == MatchMethod.MANUAL.value

    @pytest.mark.asyncio
    async def test_waits_for_the_sale_household_key(self, queue, lock_arena, flagged):
        key = household_lock_key(AGENCY, "BROWN_CAROL_NOZIP")

        async with lock_arena.hold([key]):
            task = asyncio.create_task(queue.resolve(flagged["case_id"], "new"))
            for _ in range(200):
                if lock_arena.is_locked(case_lock_key(flagged["case_id"])):
                    break
                await asyncio.sleep(0.01)

            assert lock_arena.is_locked(case_lock_key(flagged["case_id"]))
            await asyncio.sleep(0.05)
            assert not task.done()

        outcome = await asyncio.wait_for(task, timeout=5)
        assert outcome.outcome == "created"
        assert outcome.method == "manual"

    @pytest.mark.asyncio
    async def test_resolve_twice(self, queue, flagged):
        await queue.resolve(flagged["case_id"], "new")

        with pytest.raises(AlreadyResolved):
            await queue.resolve(flagged["case_id"], str(flagged["ann"].household_id))

    @pytest.mark.asyncio
    async def test_unknown_case(self, queue):
        with pytest.raises(CaseNotFound):
            await queue.resolve(uuid4(), "new")

    @pytest.mark.asyncio
    async def test_household_from_other_agency(self, queue, runner_kwargs, flagged):
        foreign = await ingest_quotes(OTHER_AGENCY, BROWN_QUOTES[:1], **runner_kwargs)

        with pytest.raises(HouseholdNotFound):
            await queue.resolve(flagged["case_id"], str(foreign.results[0].household_id))

        case = await queue.get_case(flagged["case_id"])
        assert case.status == "pending"

    @pytest.mark.asyncio
    async def test_malformed_decision(self, queue, flagged):
        with pytest.raises(ValidationError):
            await queue.resolve(flagged["case_id"], "the second one")


class TestStats:
    @pytest.mark.asyncio
    async def test_counts_by_reason(self, queue, runner_kwargs, flagged):
        await ingest_sales(AGENCY, [brown_sale("DAVE")], **runner_kwargs)
        await queue.resolve(flagged["case_id"], "new")

        stats = await queue.stats(AGENCY)

        assert stats["pending"] == 1
        assert stats["resolved"] == 1
        assert stats["by_reason"] == {"ambiguous_candidates": {"pending": 1, "resolved": 1}}
