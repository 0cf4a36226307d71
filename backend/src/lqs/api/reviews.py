"""Manual review API endpoints for LQS."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from ..models.results import ResolveOutcome, ReviewCaseView
from ..resolution import ManualReviewQueue

router = APIRouter()


class ResolveRequest(BaseModel):
    """Reviewer decision: a household id or "new"."""

    decision: str
    resolved_by: str | None = None


def _queue(request: Request) -> ManualReviewQueue:
    return ManualReviewQueue(session_factory=request.app.state.session_factory)


@router.get("/agencies/{agency_id}/reviews", response_model=list[ReviewCaseView])
async def list_reviews(
    agency_id: str,
    request: Request,
    limit: int | None = Query(None, ge=1, le=500),
):
    """List pending review cases for an agency, oldest first."""
    return await _queue(request).list_pending(agency_id, limit=limit)


@router.get("/agencies/{agency_id}/reviews/stats")
async def review_stats(agency_id: str, request: Request) -> dict[str, Any]:
    """Pending and resolved case counts by reason."""
    return await _queue(request).stats(agency_id)


@router.get("/reviews/{case_id}", response_model=ReviewCaseView)
async def get_review(case_id: UUID, request: Request):
    """Get a single review case."""
    return await _queue(request).get_case(case_id)


@router.post("/reviews/{case_id}/resolve", response_model=ResolveOutcome)
async def resolve_review(case_id: UUID, body: ResolveRequest, request: Request):
    """Resolve a case. Resolving twice is rejected with 409."""
    return await _queue(request).resolve(case_id, body.decision, resolved_by=body.resolved_by)
