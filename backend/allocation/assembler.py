"""
Plan Assembler — runs the stages for a request and builds the draft plan.

Pipeline:
  ConfigurationStore → Temporal Distributor → (per ISO week) Spatial Allocator
  → Route Pairer → dated detail rows + per-city breakdown → allocation_plans
  (status='draft') + allocation_plan_details

One HeadroomLedger is shared by every week of the pass. Placements of a week
are dealt round-robin over that week's in-period days, Monday first.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.apportion import StableDraw, stable_seed
from allocation.errors import InvalidConfiguration
from allocation.routing import RoutePairer, RoutedEvent
from allocation.snapshot import AllocationSnapshot, HeadroomLedger, WeightSourceMode
from allocation.spatial import SpatialAllocator, WeekAllocation
from allocation.store import ConfigurationStore
from allocation.temporal import TemporalDistribution, WeekBucket, distribute, validate_request
from core.config import get_settings
from db.models import AllocationPlan, AllocationPlanDetail

logger = structlog.get_logger()

UNROUTABLE_CITY_NAME = "Unroutable"


@dataclass(frozen=True)
class PlanRequest:
    """Distribute total_events (annual) for a carrier/product over [start_date, end_date]."""

    account_id: uuid.UUID
    carrier_id: uuid.UUID
    product_id: uuid.UUID
    start_date: date
    end_date: date
    total_events: int
    merge_strategy: str = "append"
    max_events_per_week: int | None = None
    weight_source: WeightSourceMode = "auto"
    created_by: str | None = None

    def seed(self) -> str:
        return stable_seed(
            self.account_id,
            self.carrier_id,
            self.product_id,
            self.start_date.isoformat(),
            self.end_date.isoformat(),
            self.total_events,
        )


@dataclass(frozen=True)
class DraftDetail:
    sequence: int
    origin_node: str
    destination_node: str
    scheduled_date: date
    notes: str | None = None


@dataclass
class PlanDraft:
    request: PlanRequest
    calculated_events: int
    unassigned_events: int
    max_events_per_week: int
    weeks: list[WeekBucket]
    details: list[DraftDetail] = field(default_factory=list)
    unassigned_breakdown: list[dict[str, Any]] = field(default_factory=list)
    city_breakdown: list[dict[str, Any]] = field(default_factory=list)
    generation_params: dict[str, Any] = field(default_factory=dict)

    @property
    def placed_events(self) -> int:
        return len(self.details)


def schedule_week(week: WeekBucket, events: list[RoutedEvent]) -> list[tuple[date, RoutedEvent]]:
    """Deal a week's events over its in-period days, in (destination, origin) order."""
    ordered = sorted(events, key=lambda e: (e.destination_node, e.origin_node))
    return [(week.days[i % len(week.days)], event) for i, event in enumerate(ordered)]


class PlanAssembler:
    """Pure aggregation over a snapshot; no I/O."""

    def __init__(self, snapshot: AllocationSnapshot, request: PlanRequest):
        self.snapshot = snapshot
        self.request = request

    def assemble(self) -> PlanDraft:
        request = self.request
        temporal = distribute(request.total_events, self.snapshot.seasonality, request.start_date, request.end_date)

        source = self.snapshot.weight_source(request.weight_source)
        ledger = self.snapshot.new_ledger()
        spatial = SpatialAllocator(self.snapshot, source)
        pairer = RoutePairer(self.snapshot, source, StableDraw(request.seed()))

        allocations: list[WeekAllocation] = []
        dated: list[tuple[date, RoutedEvent]] = []
        for week in temporal.weeks:
            allocation = spatial.allocate_week(week, ledger)
            routing = pairer.pair_week(allocation, ledger)
            allocations.append(allocation)
            dated.extend(schedule_week(week, routing.events))

        dated.sort(key=lambda item: (item[0], item[1].destination_node, item[1].origin_node))
        details = [
            DraftDetail(
                sequence=i,
                origin_node=event.origin_node,
                destination_node=event.destination_node,
                scheduled_date=day,
            )
            for i, (day, event) in enumerate(dated)
        ]

        unassigned = sum(a.unassigned for a in allocations)
        calculated = len(details) + unassigned
        if calculated != temporal.calculated_events:
            raise RuntimeError(
                f"Allocation lost events: {calculated} accounted for, {temporal.calculated_events} expected"
            )

        draft = PlanDraft(
            request=request,
            calculated_events=calculated,
            unassigned_events=unassigned,
            max_events_per_week=self.snapshot.max_events_per_week,
            weeks=temporal.weeks,
            details=details,
            unassigned_breakdown=self._unassigned_breakdown(allocations),
            city_breakdown=self._city_breakdown(spatial, allocations, ledger, calculated, temporal),
            generation_params={
                "algorithm_version": get_settings().allocation_algorithm_version,
                "weight_source": source.kind,
                "seed": request.seed(),
                "weeks": len(temporal.weeks),
                "max_events_per_week": self.snapshot.max_events_per_week,
                "exact_events": str(temporal.exact_events),
                "generated_at": datetime.utcnow().isoformat(),
            },
        )
        logger.info(
            "allocation.plan_assembled",
            account_id=str(request.account_id),
            calculated_events=draft.calculated_events,
            placed_events=draft.placed_events,
            unassigned_events=draft.unassigned_events,
            weeks=len(temporal.weeks),
            weight_source=source.kind,
        )
        return draft

    def _unassigned_breakdown(self, allocations: list[WeekAllocation]) -> list[dict[str, Any]]:
        deficits: dict[int, int] = {}
        unroutable = 0
        for allocation in allocations:
            unroutable += allocation.unroutable
            for city_id, deficit in allocation.unassigned_by_city().items():
                deficits[city_id] = deficits.get(city_id, 0) + deficit

        breakdown = [
            {"city_id": city_id, "city_name": self.snapshot.cities[city_id].name, "deficit": deficit}
            for city_id, deficit in sorted(deficits.items())
        ]
        if unroutable:
            breakdown.append({"city_id": None, "city_name": UNROUTABLE_CITY_NAME, "deficit": unroutable})
        return breakdown

    def _city_breakdown(
        self,
        spatial: SpatialAllocator,
        allocations: list[WeekAllocation],
        ledger: HeadroomLedger,
        calculated: int,
        temporal: TemporalDistribution,
    ) -> list[dict[str, Any]]:
        new_by_node: dict[str, int] = {}
        unassigned_by_city: dict[int, int] = {}
        for allocation in allocations:
            for city_result in allocation.cities:
                city_id = city_result.city.city_id
                unassigned_by_city[city_id] = unassigned_by_city.get(city_id, 0) + city_result.unassigned
                for code, count in city_result.placements.items():
                    new_by_node[code] = new_by_node.get(code, 0) + count

        week_count = max(len(temporal.weeks), 1)
        breakdown = []
        for city in spatial.weighted_cities:
            nodes = []
            for node in self.snapshot.eligible_nodes(city.city_id):
                existing = sum(ledger.existing(node.code, w.week_start, "inbound") for w in temporal.weeks)
                new = new_by_node.get(node.code, 0)
                nodes.append(
                    {
                        "node_code": node.code,
                        "existing_events": existing,
                        "new_events": new,
                        "total_events": existing + new,
                        "events_per_week": round((existing + new) / week_count, 2),
                    }
                )
            city_total = sum(n["new_events"] for n in nodes)
            breakdown.append(
                {
                    "city_id": city.city_id,
                    "city_name": city.name,
                    "classification": city.classification,
                    "total_events": city_total,
                    "unassigned_events": unassigned_by_city.get(city.city_id, 0),
                    "percentage": round(city_total / calculated * 100, 2) if calculated else 0.0,
                    "nodes": nodes,
                }
            )
        return breakdown


# ── Orchestration ────────────────────────────────────────────────────────


async def build_plan_draft(db: AsyncSession, request: PlanRequest) -> PlanDraft:
    """Read the snapshot and assemble a draft without persisting anything."""
    validate_request(request.total_events, request.start_date, request.end_date)

    store = ConfigurationStore(db)
    if not await store.carrier_serves_product(request.account_id, request.carrier_id, request.product_id):
        raise InvalidConfiguration("Carrier is not assigned to this product")

    snapshot = await store.load_snapshot(
        request.account_id,
        request.carrier_id,
        request.product_id,
        request.start_date,
        request.end_date,
        max_events_per_week=request.max_events_per_week,
        exclude_replaced_pending=request.merge_strategy == "replace",
    )
    return PlanAssembler(snapshot, request).assemble()


async def save_draft(db: AsyncSession, draft: PlanDraft) -> AllocationPlan:
    request = draft.request
    plan = AllocationPlan(
        account_id=request.account_id,
        carrier_id=request.carrier_id,
        product_id=request.product_id,
        start_date=request.start_date,
        end_date=request.end_date,
        total_events=request.total_events,
        calculated_events=draft.calculated_events,
        unassigned_events=draft.unassigned_events,
        max_events_per_week=draft.max_events_per_week,
        merge_strategy=request.merge_strategy,
        status="draft",
        unassigned_breakdown=draft.unassigned_breakdown,
        city_breakdown=draft.city_breakdown,
        generation_params=draft.generation_params,
        created_by=request.created_by,
    )
    db.add(plan)
    await db.flush()

    db.add_all(
        [
            AllocationPlanDetail(
                plan_id=plan.plan_id,
                account_id=request.account_id,
                sequence=detail.sequence,
                origin_node=detail.origin_node,
                destination_node=detail.destination_node,
                scheduled_date=detail.scheduled_date,
                notes=detail.notes,
            )
            for detail in draft.details
        ]
    )
    await db.commit()

    logger.info(
        "allocation.plan_generated",
        plan_id=str(plan.plan_id),
        account_id=str(request.account_id),
        calculated_events=plan.calculated_events,
        unassigned_events=plan.unassigned_events,
        details=len(draft.details),
    )
    return plan


async def generate_allocation_plan(db: AsyncSession, request: PlanRequest) -> tuple[AllocationPlan, PlanDraft]:
    """Generate and persist a draft plan."""
    draft = await build_plan_draft(db, request)
    plan = await save_draft(db, draft)
    return plan, draft
