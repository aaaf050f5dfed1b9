"""
Tests for merge reconciliation: append/replace semantics, the plan state
machine, rollback on failure, lock conflicts and concurrent merges.
"""

import asyncio
import uuid
from collections import Counter
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from allocation import reconciler
from allocation.assembler import PlanRequest, generate_allocation_plan
from allocation.errors import InvalidPlanTransition, MergeAtomicityFailure, MergeConflict, PlanNotFound
from allocation.plans import get_plan
from allocation.reconciler import MergeUnitOfWork, cancel_plan, count_pending_events, delete_draft_plan, merge_plan
from db.models import AllocationPlan, AllocationPlanDetail, ShipmentEvent


async def _generate(db, panel, *, strategy="append", total_events=1200):
    plan, _ = await generate_allocation_plan(
        db,
        PlanRequest(
            account_id=panel.account_id,
            carrier_id=panel.carrier_id,
            product_id=panel.product_id,
            start_date=date(2026, 2, 1),
            end_date=date(2026, 4, 30),
            total_events=total_events,
            merge_strategy=strategy,
        ),
    )
    return plan


async def _seed_events(db, panel, count, status="PENDING"):
    db.add_all(
        [
            ShipmentEvent(
                account_id=panel.account_id,
                carrier_id=panel.carrier_id,
                product_id=panel.product_id,
                origin_node="BET-01",
                destination_node="ALP-01",
                scheduled_date=date(2026, 1, 5),
                status=status,
                creation_reason="manual",
            )
            for _ in range(count)
        ]
    )
    await db.commit()


async def _pending_rows(db, panel) -> Counter:
    result = await db.execute(
        select(ShipmentEvent.origin_node, ShipmentEvent.destination_node, ShipmentEvent.scheduled_date).where(
            ShipmentEvent.account_id == panel.account_id,
            ShipmentEvent.carrier_id == panel.carrier_id,
            ShipmentEvent.product_id == panel.product_id,
            ShipmentEvent.status == "PENDING",
        )
    )
    return Counter(tuple(row) for row in result.all())


async def _detail_rows(db, plan_id) -> Counter:
    result = await db.execute(
        select(
            AllocationPlanDetail.origin_node,
            AllocationPlanDetail.destination_node,
            AllocationPlanDetail.scheduled_date,
        ).where(AllocationPlanDetail.plan_id == plan_id)
    )
    return Counter(tuple(row) for row in result.all())


async def _fresh_plan(session_factory, panel, plan_id) -> AllocationPlan:
    async with session_factory() as db:
        return await get_plan(db, panel.account_id, plan_id)


@pytest.mark.asyncio
class TestMergeStrategies:
    async def test_append_inserts_every_detail(self, test_db, session_factory, panel):
        await _seed_events(test_db, panel, 5)
        plan = await _generate(test_db, panel)

        result = await merge_plan(session_factory, panel.account_id, plan.plan_id)

        assert result.strategy == "append"
        assert result.deleted_events == 0
        assert result.inserted_events == 360
        assert await count_pending_events(test_db, panel.account_id, panel.carrier_id, panel.product_id) == 365

        merged = await _fresh_plan(session_factory, panel, plan.plan_id)
        assert merged.status == "merged"
        assert merged.merged_at is not None

    async def test_merged_events_carry_plan_provenance(self, test_db, session_factory, panel):
        plan = await _generate(test_db, panel)
        await merge_plan(session_factory, panel.account_id, plan.plan_id)

        event = (await test_db.execute(select(ShipmentEvent).limit(1))).scalar_one()
        assert event.status == "PENDING"
        assert event.creation_reason == "scheduled"
        assert event.source_plan_id == plan.plan_id
        assert event.notes == f"Generated from allocation plan #{plan.plan_id}"

    async def test_replace_swaps_only_pending_events_of_the_tuple(self, test_db, session_factory, panel):
        await _seed_events(test_db, panel, 5)
        await _seed_events(test_db, panel, 2, status="SENT")
        plan = await _generate(test_db, panel, strategy="replace")

        result = await merge_plan(session_factory, panel.account_id, plan.plan_id)

        assert result.deleted_events == 5
        assert result.inserted_events == 360
        assert await _pending_rows(test_db, panel) == await _detail_rows(test_db, plan.plan_id)
        sent = await test_db.execute(select(func.count(ShipmentEvent.event_id)).where(ShipmentEvent.status == "SENT"))
        assert sent.scalar() == 2


@pytest.mark.asyncio
class TestStateMachine:
    async def test_second_merge_is_rejected(self, test_db, session_factory, panel):
        plan = await _generate(test_db, panel)
        await merge_plan(session_factory, panel.account_id, plan.plan_id)

        with pytest.raises(InvalidPlanTransition):
            await merge_plan(session_factory, panel.account_id, plan.plan_id)
        assert await count_pending_events(test_db, panel.account_id, panel.carrier_id, panel.product_id) == 360

    async def test_cancel_discards_details(self, test_db, session_factory, panel):
        plan = await _generate(test_db, panel)

        cancelled = await cancel_plan(test_db, panel.account_id, plan.plan_id)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert await _detail_rows(test_db, plan.plan_id) == Counter()
        with pytest.raises(InvalidPlanTransition):
            await merge_plan(session_factory, panel.account_id, plan.plan_id)
        with pytest.raises(InvalidPlanTransition):
            await cancel_plan(test_db, panel.account_id, plan.plan_id)

    async def test_merged_plan_cannot_be_cancelled_or_deleted(self, test_db, session_factory, panel):
        plan = await _generate(test_db, panel)
        await merge_plan(session_factory, panel.account_id, plan.plan_id)

        async with session_factory() as db:
            with pytest.raises(InvalidPlanTransition):
                await cancel_plan(db, panel.account_id, plan.plan_id)
        async with session_factory() as db:
            with pytest.raises(InvalidPlanTransition):
                await delete_draft_plan(db, panel.account_id, plan.plan_id)

    async def test_delete_draft(self, test_db, session_factory, panel):
        plan = await _generate(test_db, panel)
        await delete_draft_plan(test_db, panel.account_id, plan.plan_id)

        with pytest.raises(PlanNotFound):
            await _fresh_plan(session_factory, panel, plan.plan_id)
        assert await _detail_rows(test_db, plan.plan_id) == Counter()

    async def test_unknown_plan(self, session_factory, panel):
        with pytest.raises(PlanNotFound):
            await merge_plan(session_factory, panel.account_id, uuid.uuid4())


@pytest.mark.asyncio
class TestAtomicity:
    async def test_failed_insert_rolls_back_the_replace_delete(self, test_db, session_factory, panel, monkeypatch):
        await _seed_events(test_db, panel, 5)
        plan = await _generate(test_db, panel, strategy="replace")
        before = await _pending_rows(test_db, panel)

        async def _broken_insert(self, plan, details):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(MergeUnitOfWork, "insert_events", _broken_insert)

        with pytest.raises(MergeAtomicityFailure):
            await merge_plan(session_factory, panel.account_id, plan.plan_id)

        assert await _pending_rows(test_db, panel) == before
        assert sum(before.values()) == 5
        still_draft = await _fresh_plan(session_factory, panel, plan.plan_id)
        assert still_draft.status == "draft"
        assert still_draft.merged_at is None

    async def test_plan_can_be_merged_after_a_failed_attempt(self, test_db, session_factory, panel, monkeypatch):
        plan = await _generate(test_db, panel)
        original_insert = MergeUnitOfWork.insert_events

        async def _broken_insert(self, plan, details):
            raise SQLAlchemyError("connection reset")

        monkeypatch.setattr(MergeUnitOfWork, "insert_events", _broken_insert)
        with pytest.raises(MergeAtomicityFailure):
            await merge_plan(session_factory, panel.account_id, plan.plan_id)

        monkeypatch.setattr(MergeUnitOfWork, "insert_events", original_insert)
        result = await merge_plan(session_factory, panel.account_id, plan.plan_id)
        assert result.inserted_events == 360


@pytest.mark.asyncio
class TestConcurrency:
    async def test_busy_tuple_lock_raises_conflict_after_retries(self, test_db, session_factory, panel, monkeypatch):
        plan = await _generate(test_db, panel)
        monkeypatch.setattr(
            reconciler,
            "get_settings",
            lambda: SimpleNamespace(
                merge_retry_attempts=2,
                merge_retry_max_wait_seconds=0.01,
                merge_lock_timeout_seconds=0.05,
            ),
        )
        lock = reconciler._tuple_lock(
            reconciler.tuple_lock_key(panel.account_id, panel.carrier_id, panel.product_id)
        )
        await lock.acquire()
        try:
            with pytest.raises(MergeConflict):
                await merge_plan(session_factory, panel.account_id, plan.plan_id)
        finally:
            lock.release()

        assert (await _fresh_plan(session_factory, panel, plan.plan_id)).status == "draft"

    async def test_concurrent_replace_merges_leave_one_plan(self, test_db, session_factory, panel):
        first = await _generate(test_db, panel, strategy="replace", total_events=1200)
        second = await _generate(test_db, panel, strategy="replace", total_events=600)

        results = await asyncio.gather(
            merge_plan(session_factory, panel.account_id, first.plan_id),
            merge_plan(session_factory, panel.account_id, second.plan_id),
        )

        assert {r.plan_id for r in results} == {first.plan_id, second.plan_id}
        pending = await _pending_rows(test_db, panel)
        candidates = [await _detail_rows(test_db, first.plan_id), await _detail_rows(test_db, second.plan_id)]
        assert pending in candidates
        # the later merge deleted exactly what the earlier one inserted
        earlier = candidates[1] if pending == candidates[0] else candidates[0]
        assert sorted(r.deleted_events for r in results) == [0, sum(earlier.values())]
