"""Sale resolution for LQS.

Links each sale to a household in a strict order: the strongest signal
available always wins and weaker ones never get a say.

1. Policy number: a quote in the agency carries the sale's policy number.
   If another sale already claimed that number, the sale goes to review.
   So does a sale whose number no quote holds but an earlier sale carries.
2. Scored candidates: households with quotes sharing the sale's exact
   surname, scored against their best quote. One candidate auto-links;
   several auto-link only with a dominant top score.
3. One-call close: no quoted household shares the surname, so the sale
   becomes a brand-new household born sold.

Ambiguous sales are parked in the manual review queue. Both paths link
through ``link_sale`` and ``close_as_new``.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..exceptions import HouseholdKeyConflict, HouseholdNotFound, SaleAlreadyLinked
from ..ingestion.base import BatchRunner
from ..ingestion.quotes import find_quote_by_policy
from ..locks import household_lock_key, policy_lock_key, surname_lock_key
from ..logging import get_context_logger, log_resolution_event
from ..matching import (
    build_household_key,
    extract_sub_producer_code,
    normalize_name_part,
    normalize_product_type,
    score,
    score_household,
)
from ..models.results import BatchResult, CandidateScore, ResolveOutcome, RowResult, RowStatus
from ..models.rows import SaleRow
from ..models.tables import (
    Household,
    HouseholdStatus,
    ManualReviewCase,
    MatchMethod,
    Quote,
    ReviewReason,
    Sale,
    SaleOutcome,
    SaleStatus,
)
from ..registry import HouseholdRegistry

logger = get_context_logger(__name__)


def sale_fingerprint(row: SaleRow) -> str:
    """Stable identity for a sale row, used to recognize replays."""
    parts = [
        (row.policy_number or "").strip().upper(),
        normalize_name_part(row.last_name),
        normalize_name_part(row.first_name),
        row.issued_date.isoformat(),
        normalize_product_type(row.product).value,
        str(row.premium_cents),
        extract_sub_producer_code(row.sub_producer) or "",
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def rank_candidates(candidates: Iterable[CandidateScore]) -> list[CandidateScore]:
    """Order candidates by score descending, then household key."""
    return sorted(candidates, key=lambda c: (-c.score, c.household_key))


class SaleResolver:
    """Resolves sales against the household registry.

    Provides methods for:
    - Resolving a sale row end to end (resolve_sale)
    - The linking primitives shared with manual review (link_sale, close_as_new)
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.registry = HouseholdRegistry(session, self.settings)

    async def resolve_sale(self, agency_id: str, row: SaleRow) -> ResolveOutcome:
        """Persist a sale and resolve it.

        A row whose fingerprint was already stored is a replay: the stored
        outcome is returned and nothing is written.

        Args:
            agency_id: Owning agency
            row: Validated sale row

        Returns:
            ResolveOutcome (matched, flagged or created)
        """
        fingerprint = sale_fingerprint(row)
        existing = await self._find_sale(agency_id, fingerprint)
        if existing is not None:
            return await self._replay(existing)

        sale = Sale(
            agency_id=agency_id,
            policy_number=row.policy_number,
            first_name=row.first_name,
            last_name=row.last_name,
            zip_code=row.zip,
            product_type=normalize_product_type(row.product).value,
            product_raw=row.product,
            sub_producer_code=extract_sub_producer_code(row.sub_producer),
            premium_cents=row.premium_cents,
            issued_date=row.issued_date,
            status=SaleStatus.PENDING.value,
            fingerprint=fingerprint,
        )
        self.session.add(sale)
        await self.session.flush()

        return await self.resolve_pending(sale)

    async def resolve_pending(self, sale: Sale) -> ResolveOutcome:
        """Run the three resolution steps for a stored, unlinked sale."""
        # Step 1: policy number
        if sale.policy_number:
            quote = await find_quote_by_policy(self.session, sale.agency_id, sale.policy_number)
            if quote is not None:
                return await self._resolve_by_policy(sale, quote)

            # No quote holds the number, but another sale may already claim it
            claim = await self._find_policy_claim(sale)
            if claim is not None:
                return await self._flag_policy_claim(sale, claim)

        # Step 2: scored surname candidates
        candidates = await self.registry.find_candidates_by_last_name(
            sale.agency_id, sale.last_name
        )
        if candidates:
            return await self._resolve_scored(sale, candidates)

        # Step 3: one-call close
        return await self.close_as_new(sale, method=MatchMethod.ONE_CALL_CLOSE)

    # =========================
    # Linking primitives
    # =========================

    async def link_sale(
        self,
        sale: Sale,
        household: Household,
        method: MatchMethod,
        *,
        quote_id=None,
        match_score: int | None = None,
        outcome: SaleOutcome = SaleOutcome.MATCHED,
    ) -> ResolveOutcome:
        """Link a sale to a household, moving the household to sold.

        A household that is already sold keeps its sold date.

        Raises:
            SaleAlreadyLinked: If the sale already has a household
            HouseholdNotFound: If the household belongs to another agency
        """
        if sale.household_id is not None:
            raise SaleAlreadyLinked(sale.id, sale.household_id)
        if household.agency_id != sale.agency_id:
            raise HouseholdNotFound(household.id)

        if household.status != HouseholdStatus.SOLD.value:
            await self.registry.transition_to_sold(household, sale.issued_date)

        sale.household_id = household.id
        sale.quote_id = quote_id
        sale.status = SaleStatus.LINKED.value
        sale.outcome = outcome.value
        sale.match_method = method.value
        sale.match_score = match_score
        sale.linked_at = datetime.now(timezone.utc)
        await self.session.flush()

        log_resolution_event(
            method.value, str(sale.id), str(household.id), outcome.value, match_score
        )
        return ResolveOutcome(
            outcome=outcome.value,
            sale_id=sale.id,
            household_id=household.id,
            method=method.value,
            score=match_score,
        )

    async def close_as_new(self, sale: Sale, method: MatchMethod) -> ResolveOutcome:
        """Give a sale its own household, born sold on the sale date.

        If the sale's exact household key is already taken (a lead-only
        household, or an earlier close for the same person) the sale is
        linked to that household instead. Automatic closes record that link
        as ``household_key``; a reviewer's decision keeps ``manual``.
        """
        try:
            household = await self.registry.create_sold_household(
                sale.agency_id,
                first_name=sale.first_name,
                last_name=sale.last_name,
                zip_code=sale.zip_code,
                sale_date=sale.issued_date,
            )
        except HouseholdKeyConflict as e:
            household = await self.registry.get(e.existing_id)
            logger.info(
                f"Sale {sale.id} reuses existing household {e.household_key}"
            )
            reuse_method = method if method == MatchMethod.MANUAL else MatchMethod.HOUSEHOLD_KEY
            return await self.link_sale(sale, household, reuse_method)

        return await self.link_sale(sale, household, method, outcome=SaleOutcome.CREATED)

    # =========================
    # Resolution steps
    # =========================

    async def _find_policy_claim(self, sale: Sale) -> Sale | None:
        """Find another sale of the agency carrying the same policy number.

        Linked sales are preferred, oldest first.
        """
        result = await self.session.execute(
            select(Sale)
            .where(
                Sale.agency_id == sale.agency_id,
                Sale.policy_number == sale.policy_number,
                Sale.id != sale.id,
            )
            .order_by(Sale.household_id.is_(None), Sale.created_at, Sale.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _resolve_by_policy(self, sale: Sale, quote: Quote) -> ResolveOutcome:
        household = await self.registry.get(quote.household_id)
        if await self._find_policy_claim(sale) is not None:
            result = score(sale, quote)
            candidate = CandidateScore(
                household_id=household.id,
                household_key=household.household_key,
                score=result.value,
                reasons=list(result.reasons),
                quote_id=quote.id,
            )
            return await self._flag(sale, ReviewReason.POLICY_NUMBER_CONFLICT, [candidate])

        return await self.link_sale(sale, household, MatchMethod.POLICY_NUMBER, quote_id=quote.id)

    async def _flag_policy_claim(self, sale: Sale, claim: Sale) -> ResolveOutcome:
        """Send a sale to review because an earlier sale already carries its policy number.

        The earlier sale's household, when it has one, is the only candidate.
        """
        candidates = []
        if claim.household_id is not None:
            household = await self.registry.get(claim.household_id)
            quotes = await self.registry.quotes_for([household.id])
            result = score_household(sale, quotes.get(household.id, []))
            candidates.append(
                CandidateScore(
                    household_id=household.id,
                    household_key=household.household_key,
                    score=result.value,
                    reasons=list(result.reasons),
                    quote_id=result.quote_id,
                )
            )
        return await self._flag(sale, ReviewReason.POLICY_NUMBER_CONFLICT, candidates)

    async def _resolve_scored(
        self, sale: Sale, households: Sequence[Household]
    ) -> ResolveOutcome:
        quotes = await self.registry.quotes_for(h.id for h in households)
        by_id = {h.id: h for h in households}

        candidates = []
        for household in households:
            result = score_household(sale, quotes.get(household.id, []))
            candidates.append(
                CandidateScore(
                    household_id=household.id,
                    household_key=household.household_key,
                    score=result.value,
                    reasons=list(result.reasons),
                    quote_id=result.quote_id,
                )
            )
        ranked = rank_candidates(candidates)
        top = ranked[0]
        min_score = self.settings.auto_match_min_score

        if len(ranked) == 1:
            household = by_id[top.household_id]
            sale_first = normalize_name_part(sale.first_name)
            household_first = normalize_name_part(household.first_name)
            if sale_first and household_first and sale_first != household_first and top.score < min_score:
                return await self._flag(sale, ReviewReason.FIRST_NAME_MISMATCH, ranked)
            return await self.link_sale(
                sale, household, MatchMethod.SCORED, quote_id=top.quote_id, match_score=top.score
            )

        second = ranked[1]
        if top.score >= min_score and top.score - second.score >= self.settings.auto_match_min_margin:
            return await self.link_sale(
                sale,
                by_id[top.household_id],
                MatchMethod.SCORED,
                quote_id=top.quote_id,
                match_score=top.score,
            )

        return await self._flag(sale, ReviewReason.AMBIGUOUS_CANDIDATES, ranked)

    async def _flag(
        self,
        sale: Sale,
        reason: ReviewReason,
        candidates: list[CandidateScore],
    ) -> ResolveOutcome:
        case = ManualReviewCase(
            agency_id=sale.agency_id,
            sale_id=sale.id,
            reason=reason.value,
            candidates=[c.to_json() for c in candidates],
        )
        self.session.add(case)
        sale.outcome = SaleOutcome.FLAGGED.value
        await self.session.flush()

        top_score = candidates[0].score if candidates else None
        log_resolution_event(reason.value, str(sale.id), None, SaleOutcome.FLAGGED.value, top_score)
        return ResolveOutcome(
            outcome=SaleOutcome.FLAGGED.value,
            sale_id=sale.id,
            case_id=case.id,
            score=top_score,
            reason=reason.value,
        )

    # =========================
    # Replays
    # =========================

    async def _find_sale(self, agency_id: str, fingerprint: str) -> Sale | None:
        result = await self.session.execute(
            select(Sale).where(Sale.agency_id == agency_id, Sale.fingerprint == fingerprint)
        )
        return result.scalar_one_or_none()

    async def _replay(self, sale: Sale) -> ResolveOutcome:
        if sale.outcome is None:
            return await self.resolve_pending(sale)

        result = await self.session.execute(
            select(ManualReviewCase).where(ManualReviewCase.sale_id == sale.id)
        )
        case = result.scalar_one_or_none()
        return ResolveOutcome(
            outcome=sale.outcome,
            sale_id=sale.id,
            household_id=sale.household_id,
            case_id=case.id if case else None,
            method=sale.match_method,
            score=sale.match_score,
            reason=case.reason if case else None,
            replayed=True,
        )


_ROW_STATUS = {
    SaleOutcome.MATCHED.value: RowStatus.MATCHED,
    SaleOutcome.FLAGGED.value: RowStatus.FLAGGED,
    SaleOutcome.CREATED.value: RowStatus.CREATED,
}


class SaleBatch(BatchRunner[SaleRow]):
    """Batch of sales for one agency."""

    kind = "sales"
    row_model = SaleRow

    def lock_keys(self, row: SaleRow) -> Iterable[str | None]:
        key = build_household_key(row.last_name, row.first_name, row.zip)
        return [
            surname_lock_key(self.agency_id, normalize_name_part(row.last_name)),
            policy_lock_key(self.agency_id, row.policy_number) if row.policy_number else None,
            household_lock_key(self.agency_id, key),
        ]

    async def process_row(self, session: AsyncSession, row: SaleRow, row_index: int) -> RowResult:
        outcome = await SaleResolver(session, self.settings).resolve_sale(self.agency_id, row)
        status = RowStatus.UNCHANGED if outcome.replayed else _ROW_STATUS[outcome.outcome]
        return RowResult(
            row_index=row_index,
            status=status,
            reason=outcome.reason,
            household_id=outcome.household_id,
            sale_id=outcome.sale_id,
            case_id=outcome.case_id,
        )


async def ingest_sales(agency_id: str, rows: Sequence[Any], **kwargs: Any) -> BatchResult:
    """Ingest and resolve a batch of sales.

    Args:
        agency_id: Owning agency
        rows: Sale rows (mappings or SaleRow)
        **kwargs: BatchRunner options (session_factory, cancel_event, ...)

    Returns:
        BatchResult with one entry per row
    """
    return await SaleBatch(agency_id, **kwargs).run(rows)
