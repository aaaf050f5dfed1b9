"""Plan lookups and review statistics shared by the reconciler, the round-trip validator and the API."""

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.errors import InvalidPlanTransition, PlanNotFound
from db.models import AllocationPlan, AllocationPlanDetail, City, Node

PLAN_STATUSES = ("draft", "merged", "cancelled")
MERGE_STRATEGIES = ("append", "replace")


async def get_plan(db: AsyncSession, account_id: uuid.UUID, plan_id: uuid.UUID, *, for_update: bool = False) -> AllocationPlan:
    query = select(AllocationPlan).where(AllocationPlan.plan_id == plan_id, AllocationPlan.account_id == account_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    plan = result.scalar_one_or_none()
    if plan is None:
        raise PlanNotFound(f"Allocation plan {plan_id} not found")
    return plan


def ensure_draft(plan: AllocationPlan, action: str) -> None:
    if plan.status != "draft":
        raise InvalidPlanTransition(f"Cannot {action} plan {plan.plan_id}: status is '{plan.status}', expected 'draft'")


async def get_plan_details(db: AsyncSession, plan_id: uuid.UUID) -> list[AllocationPlanDetail]:
    result = await db.execute(
        select(AllocationPlanDetail)
        .where(AllocationPlanDetail.plan_id == plan_id)
        .order_by(AllocationPlanDetail.scheduled_date, AllocationPlanDetail.sequence)
    )
    return list(result.scalars().all())


async def node_city_lookup(db: AsyncSession, account_id: uuid.UUID, codes: set[str]) -> dict[str, tuple[str, str]]:
    """node code → (city name, city classification)."""
    if not codes:
        return {}
    result = await db.execute(
        select(Node.code, City.name, City.classification)
        .join(City, City.city_id == Node.city_id)
        .where(Node.account_id == account_id, Node.code.in_(codes))
    )
    return {code: (name, classification) for code, name, classification in result.all()}


async def plan_statistics(db: AsyncSession, account_id: uuid.UUID, plan_id: uuid.UUID) -> dict[str, Any]:
    """Review stats: totals, average per week, distinct destination cities, per-classification counts."""
    plan = await get_plan(db, account_id, plan_id)
    details = await get_plan_details(db, plan_id)
    lookup = await node_city_lookup(db, account_id, {d.destination_node for d in details})

    classifications = {"A": 0, "B": 0, "C": 0}
    cities = set()
    for detail in details:
        city_name, classification = lookup.get(detail.destination_node, ("Unknown", "N/A"))
        cities.add(city_name)
        if classification in classifications:
            classifications[classification] += 1

    days = (plan.end_date - plan.start_date).days + 1
    weeks = max(-(-days // 7), 1)
    return {
        "plan_id": plan.plan_id,
        "total_events": len(details),
        "avg_events_per_week": round(len(details) / weeks),
        "unique_cities": len(cities),
        "classifications": classifications,
    }
