"""Manual review queue for flagged sales.

Cases are created by the resolver when a sale cannot be linked safely
(policy number already claimed, ambiguous candidates, or a lone candidate
whose first name disagrees). A reviewer resolves each case exactly once,
either to a household of the same agency or to "new".
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..db import get_session_factory
from ..exceptions import (
    AlreadyResolved,
    CaseNotFound,
    HouseholdNotFound,
    StorageError,
    ValidationError,
)
from ..locks import (
    KeyedLockArena,
    case_lock_key,
    get_lock_arena,
    household_lock_key,
    policy_lock_key,
    surname_lock_key,
)
from ..logging import get_context_logger
from ..matching import build_household_key, normalize_name_part
from ..models.results import CandidateScore, ResolveOutcome, ReviewCaseView
from ..models.tables import ManualReviewCase, MatchMethod, ReviewStatus, Sale
from .resolver import SaleResolver

logger = get_context_logger(__name__)

NEW_HOUSEHOLD = "new"


def parse_decision(decision: str | UUID) -> UUID | None:
    """Parse a reviewer decision: a household id, or None for "new".

    Raises:
        ValidationError: If the decision is neither
    """
    if isinstance(decision, UUID):
        return decision
    text = str(decision).strip()
    if text.lower() == NEW_HOUSEHOLD:
        return None
    try:
        return UUID(text)
    except ValueError as e:
        raise ValidationError(
            f"Decision must be a household id or '{NEW_HOUSEHOLD}', got {decision!r}"
        ) from e


def _to_view(case: ManualReviewCase, sale: Sale | None) -> ReviewCaseView:
    return ReviewCaseView(
        id=case.id,
        agency_id=case.agency_id,
        sale_id=case.sale_id,
        reason=case.reason,
        status=case.status,
        candidates=[CandidateScore.model_validate(c) for c in case.candidates or []],
        created_at=case.created_at,
        resolved_at=case.resolved_at,
        resolution=case.resolution,
        resolved_by=case.resolved_by,
        sale_first_name=sale.first_name if sale else None,
        sale_last_name=sale.last_name if sale else None,
        sale_policy_number=sale.policy_number if sale else None,
        sale_product_type=sale.product_type if sale else None,
        sale_premium_cents=sale.premium_cents if sale else None,
        sale_issued_date=sale.issued_date if sale else None,
    )


class ManualReviewQueue:
    """Queue of sales awaiting a reviewer's decision.

    Provides methods for:
    - Listing pending cases per agency
    - Resolving a case to a household or to a new household
    - Tracking statistics
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        settings: Settings | None = None,
        lock_arena: KeyedLockArena | None = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.settings = settings or get_settings()
        self.lock_arena = lock_arena or get_lock_arena()

    async def list_pending(self, agency_id: str, limit: int | None = None) -> list[ReviewCaseView]:
        """List unresolved cases for an agency, oldest first.

        Args:
            agency_id: Agency to list
            limit: Maximum cases to return

        Returns:
            Pending cases with sale context
        """
        query = (
            select(ManualReviewCase, Sale)
            .join(Sale, Sale.id == ManualReviewCase.sale_id)
            .where(
                ManualReviewCase.agency_id == agency_id,
                ManualReviewCase.status == ReviewStatus.PENDING.value,
            )
            .order_by(ManualReviewCase.created_at, ManualReviewCase.id)
        )
        if limit:
            query = query.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_view(case, sale) for case, sale in result.all()]

    async def get_case(self, case_id: UUID) -> ReviewCaseView:
        """Get a case by ID.

        Raises:
            CaseNotFound: If no such case exists
        """
        async with self.session_factory() as session:
            case = await session.get(ManualReviewCase, case_id)
            if case is None:
                raise CaseNotFound(case_id)
            sale = await session.get(Sale, case.sale_id)
            return _to_view(case, sale)

    async def resolve(
        self,
        case_id: UUID,
        decision: str | UUID,
        resolved_by: str | None = None,
    ) -> ResolveOutcome:
        """Resolve a case to a household or to a new household.

        Uses the same linking primitives as automatic resolution, so a
        manually resolved sale looks like any other once committed.

        Args:
            case_id: Case to resolve
            decision: Household id (same agency) or "new"
            resolved_by: Reviewer identifier

        Returns:
            ResolveOutcome carrying the case id

        Raises:
            CaseNotFound: If the case does not exist
            AlreadyResolved: If the case was resolved before
            HouseholdNotFound: If the chosen household is not in the agency
            ValidationError: If the decision is malformed
        """
        household_id = parse_decision(decision)

        # Read the sale's surname, policy number and household key to know which keys to hold
        async with self.session_factory() as session:
            case = await session.get(ManualReviewCase, case_id)
            if case is None:
                raise CaseNotFound(case_id)
            sale = await session.get(Sale, case.sale_id)
            keys = [
                case_lock_key(case_id),
                surname_lock_key(case.agency_id, normalize_name_part(sale.last_name)),
                policy_lock_key(case.agency_id, sale.policy_number) if sale.policy_number else None,
                household_lock_key(
                    case.agency_id,
                    build_household_key(sale.last_name, sale.first_name, sale.zip_code),
                ),
            ]

        async with self.lock_arena.hold(keys):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        outcome = await self._apply(session, case_id, household_id, resolved_by)
            except SQLAlchemyError as e:
                raise StorageError(f"{type(e).__name__}: {e}", original=e) from e

        logger.info(
            f"Resolved case {case_id}: {decision} by {resolved_by or 'unknown'}"
        )
        return outcome

    async def _apply(
        self,
        session: AsyncSession,
        case_id: UUID,
        household_id: UUID | None,
        resolved_by: str | None,
    ) -> ResolveOutcome:
        # Re-read under the lock; another reviewer may have won the race
        case = await session.get(ManualReviewCase, case_id)
        if case is None:
            raise CaseNotFound(case_id)
        if case.status == ReviewStatus.RESOLVED.value:
            raise AlreadyResolved(case_id, case.resolution)

        sale = await session.get(Sale, case.sale_id)
        resolver = SaleResolver(session, self.settings)

        if household_id is None:
            outcome = await resolver.close_as_new(sale, method=MatchMethod.MANUAL)
            resolution = NEW_HOUSEHOLD
        else:
            household = await resolver.registry.get(household_id)
            if household is None or household.agency_id != case.agency_id:
                raise HouseholdNotFound(household_id)
            chosen = next(
                (c for c in case.candidates or [] if c.get("household_id") == str(household_id)),
                None,
            )
            outcome = await resolver.link_sale(
                sale,
                household,
                MatchMethod.MANUAL,
                quote_id=UUID(chosen["quote_id"]) if chosen and chosen.get("quote_id") else None,
                match_score=chosen["score"] if chosen else None,
            )
            resolution = str(household_id)

        case.status = ReviewStatus.RESOLVED.value
        case.resolved_at = datetime.now(timezone.utc)
        case.resolution = resolution
        case.resolved_by = resolved_by
        await session.flush()

        return outcome.model_copy(update={"case_id": case.id})

    async def stats(self, agency_id: str) -> dict[str, Any]:
        """Get case counts for an agency.

        Returns:
            Totals by status and a per-reason breakdown
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    ManualReviewCase.reason,
                    ManualReviewCase.status,
                    func.count(ManualReviewCase.id),
                )
                .where(ManualReviewCase.agency_id == agency_id)
                .group_by(ManualReviewCase.reason, ManualReviewCase.status)
            )
            rows = result.all()

        by_reason: dict[str, dict[str, int]] = defaultdict(
            lambda: {ReviewStatus.PENDING.value: 0, ReviewStatus.RESOLVED.value: 0}
        )
        totals = {ReviewStatus.PENDING.value: 0, ReviewStatus.RESOLVED.value: 0}
        for reason, status, count in rows:
            by_reason[reason][status] = count
            totals[status] = totals.get(status, 0) + count

        return {
            "agency_id": agency_id,
            "pending": totals[ReviewStatus.PENDING.value],
            "resolved": totals[ReviewStatus.RESOLVED.value],
            "by_reason": dict(by_reason),
        }
