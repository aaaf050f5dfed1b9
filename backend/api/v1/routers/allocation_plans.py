"""
Allocation Plan Router — generate, review, edit and merge allocation plans.

The human-in-the-loop workflow for event scheduling:
  1. Planner previews a request (nothing persisted)
  2. Planner generates it → plan status='draft' with dated detail rows
  3. Planner reviews, optionally exports rows, edits them and re-imports
  4. Planner merges (append/replace into shipment_events) or cancels

Unsatisfiable capacity never fails a request; it shows up as
unassigned_events and unassigned_breakdown.
"""

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from allocation.assembler import PlanDraft, PlanRequest, build_plan_draft, generate_allocation_plan
from allocation.errors import (
    AllocationError,
    InvalidConfiguration,
    InvalidPlanTransition,
    MergeAtomicityFailure,
    MergeConflict,
    PlanNotFound,
)
from allocation.plans import PLAN_STATUSES, get_plan, get_plan_details, plan_statistics
from allocation.reconciler import cancel_plan, delete_draft_plan, merge_plan
from allocation.roundtrip import export_plan_rows, import_plan_rows, parse_csv, rows_to_csv
from api.deps import get_account_id, get_current_user, get_session_factory, get_tenant_db
from core.config import get_settings
from db.models import AllocationPlan, AllocationPlanDetail

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/allocation-plans", tags=["allocation-plans"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class PlanGenerateRequest(BaseModel):
    carrier_id: UUID
    product_id: UUID
    start_date: date
    end_date: date
    total_events: int = Field(..., description="Annual event total; the plan covers its period share")
    merge_strategy: Literal["append", "replace"] = "append"
    max_events_per_week: int | None = Field(None, ge=0, description="Overrides the account weekly cap")
    weight_source: Literal["auto", "city_requirements", "classification_matrix"] | None = None


class PlanResponse(BaseModel):
    plan_id: UUID
    account_id: UUID
    carrier_id: UUID
    product_id: UUID
    start_date: date
    end_date: date
    total_events: int
    calculated_events: int
    unassigned_events: int
    max_events_per_week: int
    merge_strategy: str
    status: str
    unassigned_breakdown: list[dict[str, Any]] | None
    city_breakdown: list[dict[str, Any]] | None
    generation_params: dict[str, Any] | None
    created_by: str | None
    created_at: datetime
    merged_at: datetime | None
    cancelled_at: datetime | None

    model_config = {"from_attributes": True}


class PlanPreviewResponse(BaseModel):
    calculated_events: int
    placed_events: int
    unassigned_events: int
    total_weeks: int
    max_events_per_week: int
    unassigned_breakdown: list[dict[str, Any]]
    city_breakdown: list[dict[str, Any]]
    generation_params: dict[str, Any]


class PlanDetailResponse(BaseModel):
    detail_id: UUID
    plan_id: UUID
    sequence: int
    origin_node: str
    destination_node: str
    scheduled_date: date
    notes: str | None

    model_config = {"from_attributes": True}


class PlanStatisticsResponse(BaseModel):
    plan_id: UUID
    total_events: int
    avg_events_per_week: int
    unique_cities: int
    classifications: dict[str, int]


class MergeResponse(BaseModel):
    plan_id: UUID
    strategy: str
    deleted_events: int
    inserted_events: int
    merged_at: datetime


class ImportRow(BaseModel):
    """Raw imported row; validation happens in the round-trip validator."""
    origin_node: str | None = None
    destination_node: str | None = None
    scheduled_date: str | None = None
    notes: str | None = None


class ImportResponse(BaseModel):
    plan_id: UUID
    received_rows: int
    accepted_rows: int
    calculated_events: int


# ─── Helpers ────────────────────────────────────────────────────────────────

def _http_error(exc: AllocationError) -> HTTPException:
    if isinstance(exc, PlanNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidPlanTransition, MergeConflict)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, MergeAtomicityFailure):
        return HTTPException(status_code=500, detail=str(exc))
    if isinstance(exc, InvalidConfiguration):
        return HTTPException(status_code=422, detail={"message": str(exc), "problems": exc.problems})
    return HTTPException(status_code=422, detail=str(exc))


def _plan_request(body: PlanGenerateRequest, account_id: UUID, user: dict) -> PlanRequest:
    return PlanRequest(
        account_id=account_id,
        carrier_id=body.carrier_id,
        product_id=body.product_id,
        start_date=body.start_date,
        end_date=body.end_date,
        total_events=body.total_events,
        merge_strategy=body.merge_strategy,
        max_events_per_week=body.max_events_per_week,
        weight_source=body.weight_source or get_settings().allocation_default_weight_source,
        created_by=user.get("email") or user.get("sub"),
    )


def _preview(draft: PlanDraft) -> PlanPreviewResponse:
    return PlanPreviewResponse(
        calculated_events=draft.calculated_events,
        placed_events=draft.placed_events,
        unassigned_events=draft.unassigned_events,
        total_weeks=len(draft.weeks),
        max_events_per_week=draft.max_events_per_week,
        unassigned_breakdown=draft.unassigned_breakdown,
        city_breakdown=draft.city_breakdown,
        generation_params=draft.generation_params,
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────

@router.post("/preview", response_model=PlanPreviewResponse)
async def preview_allocation_plan(
    body: PlanGenerateRequest,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
    user: dict = Depends(get_current_user),
):
    """Run the engine without persisting anything."""
    try:
        draft = await build_plan_draft(db, _plan_request(body, account_id, user))
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return _preview(draft)


@router.post("/", response_model=PlanResponse, status_code=201)
async def create_allocation_plan(
    body: PlanGenerateRequest,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
    user: dict = Depends(get_current_user),
):
    """Generate a plan and save it as draft."""
    try:
        plan, _ = await generate_allocation_plan(db, _plan_request(body, account_id, user))
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return plan


@router.get("/", response_model=list[PlanResponse])
async def list_allocation_plans(
    status: str | None = None,
    carrier_id: UUID | None = None,
    product_id: UUID | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """List plans, newest first."""
    if status and status not in PLAN_STATUSES:
        raise HTTPException(status_code=422, detail=f"status must be one of {list(PLAN_STATUSES)}")
    query = select(AllocationPlan).where(AllocationPlan.account_id == account_id)
    if status:
        query = query.where(AllocationPlan.status == status)
    if carrier_id:
        query = query.where(AllocationPlan.carrier_id == carrier_id)
    if product_id:
        query = query.where(AllocationPlan.product_id == product_id)
    query = query.order_by(AllocationPlan.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_allocation_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    try:
        return await get_plan(db, account_id, plan_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc


@router.get("/{plan_id}/details", response_model=list[PlanDetailResponse])
async def list_plan_details(
    plan_id: UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(500, ge=1, le=5000),
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """Detail rows ordered by scheduled date."""
    try:
        await get_plan(db, account_id, plan_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    result = await db.execute(
        select(AllocationPlanDetail)
        .where(AllocationPlanDetail.plan_id == plan_id)
        .order_by(AllocationPlanDetail.scheduled_date, AllocationPlanDetail.sequence)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/{plan_id}/statistics", response_model=PlanStatisticsResponse)
async def get_plan_statistics(
    plan_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    try:
        return await plan_statistics(db, account_id, plan_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc


@router.post("/{plan_id}/merge", response_model=MergeResponse)
async def merge_allocation_plan(
    plan_id: UUID,
    account_id: UUID = Depends(get_account_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Merge a draft into shipment_events with the plan's strategy, atomically."""
    try:
        result = await merge_plan(session_factory, account_id, plan_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return MergeResponse(
        plan_id=result.plan_id,
        strategy=result.strategy,
        deleted_events=result.deleted_events,
        inserted_events=result.inserted_events,
        merged_at=result.merged_at,
    )


@router.post("/{plan_id}/cancel", response_model=PlanResponse)
async def cancel_allocation_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    try:
        return await cancel_plan(db, account_id, plan_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc


@router.delete("/{plan_id}", status_code=204)
async def delete_allocation_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """Delete a draft plan outright."""
    try:
        await delete_draft_plan(db, account_id, plan_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@router.get("/{plan_id}/export")
async def export_allocation_plan(
    plan_id: UUID,
    format: Literal["json", "csv"] = "json",
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """Detail rows enriched with city/classification for review."""
    try:
        rows = await export_plan_rows(db, account_id, plan_id)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    if format == "csv":
        return Response(
            content=rows_to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="allocation-plan-{plan_id}.csv"'},
        )
    return rows


@router.post("/{plan_id}/import", response_model=ImportResponse)
async def import_allocation_plan_rows(
    plan_id: UUID,
    rows: list[ImportRow],
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """Replace a draft's detail rows with externally edited rows."""
    raw = [row.model_dump() for row in rows]
    try:
        plan = await import_plan_rows(db, account_id, plan_id, raw)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return ImportResponse(
        plan_id=plan.plan_id,
        received_rows=len(raw),
        accepted_rows=plan.calculated_events,
        calculated_events=plan.calculated_events,
    )


@router.post("/{plan_id}/import-csv", response_model=ImportResponse)
async def import_allocation_plan_csv(
    plan_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """Same as /import, reading a raw text/csv body."""
    raw = parse_csv((await request.body()).decode("utf-8-sig"))
    try:
        plan = await import_plan_rows(db, account_id, plan_id, raw)
    except AllocationError as exc:
        raise _http_error(exc) from exc
    return ImportResponse(
        plan_id=plan.plan_id,
        received_rows=len(raw),
        accepted_rows=plan.calculated_events,
        calculated_events=plan.calculated_events,
    )
