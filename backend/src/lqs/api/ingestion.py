"""Batch ingestion API endpoints for LQS."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from ..ingestion import ingest_leads, ingest_quotes
from ..models.results import BatchResult, RowResult
from ..resolution import ingest_sales

router = APIRouter(prefix="/agencies/{agency_id}")


# =========================
# Request / Response Models
# =========================


class BatchRequest(BaseModel):
    """Rows of one uploaded file, already parsed into records."""

    rows: list[dict[str, Any]] = Field(default_factory=list)


class LeadBatchRequest(BatchRequest):
    lead_source: str | None = None


class BatchResponse(BaseModel):
    """Audit trail for one batch."""

    batch_id: UUID
    agency_id: str
    kind: str
    status: str
    started_at: datetime
    completed_at: datetime
    counts: dict[str, int]
    results: list[RowResult]

    @classmethod
    def from_result(cls, batch: BatchResult) -> "BatchResponse":
        return cls(
            batch_id=batch.batch_id,
            agency_id=batch.agency_id,
            kind=batch.kind,
            status=batch.status,
            started_at=batch.started_at,
            completed_at=batch.completed_at,
            counts=batch.counts,
            results=batch.results,
        )


def _runner_options(request: Request) -> dict[str, Any]:
    return {"session_factory": request.app.state.session_factory}


# =========================
# Endpoints
# =========================


@router.post("/leads", response_model=BatchResponse)
async def post_leads(agency_id: str, body: LeadBatchRequest, request: Request):
    """Ingest a batch of leads."""
    batch = await ingest_leads(
        agency_id, body.rows, lead_source=body.lead_source, **_runner_options(request)
    )
    return BatchResponse.from_result(batch)


@router.post("/quotes", response_model=BatchResponse)
async def post_quotes(agency_id: str, body: BatchRequest, request: Request):
    """Ingest a batch of quotes."""
    batch = await ingest_quotes(agency_id, body.rows, **_runner_options(request))
    return BatchResponse.from_result(batch)


@router.post("/sales", response_model=BatchResponse)
async def post_sales(agency_id: str, body: BatchRequest, request: Request):
    """Ingest and resolve a batch of sales."""
    batch = await ingest_sales(agency_id, body.rows, **_runner_options(request))
    return BatchResponse.from_result(batch)
