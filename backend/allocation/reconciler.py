"""
Merge Reconciler — applies a draft plan to the production event store.

State machine:
  draft --merge(append)-->  merged
  draft --merge(replace)--> merged
  draft --cancel-->         cancelled
  merged / cancelled are terminal.

append:  insert every detail row as a PENDING shipment event.
replace: delete the PENDING events of the same (account, carrier, product),
         then insert every detail row as a PENDING shipment event.

Delete, insert and the status update run inside one MergeUnitOfWork: one
transaction that either commits as a whole or rolls back, leaving the plan
in draft. Merges on the same tuple are serialized by an in-process lock plus,
on PostgreSQL, a transaction-scoped advisory lock. A busy lock raises
MergeConflict, which is retried with exponential backoff.
"""

import asyncio
import hashlib
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from allocation.errors import MergeAtomicityFailure, MergeConflict
from allocation.plans import ensure_draft, get_plan, get_plan_details
from core.config import get_settings
from db.models import AllocationPlan, AllocationPlanDetail, ShipmentEvent

logger = structlog.get_logger()

# asyncio locks bind to the loop that first waits on them; one table per loop.
_TUPLE_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[int, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _tuple_lock(lock_key: int) -> asyncio.Lock:
    locks = _TUPLE_LOCKS.setdefault(asyncio.get_running_loop(), {})
    return locks.setdefault(lock_key, asyncio.Lock())


def tuple_lock_key(account_id: uuid.UUID, carrier_id: uuid.UUID, product_id: uuid.UUID) -> int:
    """Signed 64-bit key for pg_try_advisory_xact_lock."""
    digest = hashlib.sha256(f"{account_id}:{carrier_id}:{product_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@dataclass
class MergeResult:
    plan_id: uuid.UUID
    strategy: str
    deleted_events: int
    inserted_events: int
    merged_at: datetime


class MergeUnitOfWork:
    """
    One transaction for a merge, with an explicit commit/rollback contract.

    Leaving the context without commit() rolls everything back, including a
    delete that already executed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        account_id: uuid.UUID,
        lock_key: int,
        lock_timeout: float,
    ):
        self.session_factory = session_factory
        self.account_id = account_id
        self.lock_key = lock_key
        self.lock_timeout = lock_timeout
        self.session: AsyncSession | None = None
        self._lock = _tuple_lock(lock_key)
        self._committed = False

    async def __aenter__(self) -> "MergeUnitOfWork":
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.lock_timeout)
        except asyncio.TimeoutError as exc:
            raise MergeConflict(f"Another merge holds lock {self.lock_key}") from exc

        self.session = self.session_factory()
        try:
            connection = await self.session.connection()
            if connection.dialect.name == "postgresql":
                await self.session.execute(
                    text("SELECT set_config('app.current_account_id', :aid, true)"),
                    {"aid": str(self.account_id)},
                )
                acquired = await self.session.execute(
                    text("SELECT pg_try_advisory_xact_lock(:key)"), {"key": self.lock_key}
                )
                if not acquired.scalar():
                    raise MergeConflict(f"Another merge holds advisory lock {self.lock_key}")
        except BaseException:
            await self._close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self._close()
        return False

    async def _close(self) -> None:
        try:
            if self.session is not None:
                if not self._committed:
                    await self.session.rollback()
                await self.session.close()
        finally:
            self._lock.release()

    async def delete_pending_events(self, plan: AllocationPlan) -> int:
        result = await self.session.execute(
            delete(ShipmentEvent).where(
                ShipmentEvent.account_id == plan.account_id,
                ShipmentEvent.carrier_id == plan.carrier_id,
                ShipmentEvent.product_id == plan.product_id,
                ShipmentEvent.status == "PENDING",
            )
        )
        return int(result.rowcount or 0)

    async def insert_events(self, plan: AllocationPlan, details: list[AllocationPlanDetail]) -> int:
        self.session.add_all(
            [
                ShipmentEvent(
                    account_id=plan.account_id,
                    carrier_id=plan.carrier_id,
                    product_id=plan.product_id,
                    origin_node=detail.origin_node,
                    destination_node=detail.destination_node,
                    scheduled_date=detail.scheduled_date,
                    status="PENDING",
                    creation_reason="scheduled",
                    notes=detail.notes or f"Generated from allocation plan #{plan.plan_id}",
                    source_plan_id=plan.plan_id,
                )
                for detail in details
            ]
        )
        await self.session.flush()
        return len(details)

    async def commit(self) -> None:
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        await self.session.rollback()


async def count_pending_events(
    db: AsyncSession, account_id: uuid.UUID, carrier_id: uuid.UUID, product_id: uuid.UUID
) -> int:
    result = await db.execute(
        select(func.count(ShipmentEvent.event_id)).where(
            ShipmentEvent.account_id == account_id,
            ShipmentEvent.carrier_id == carrier_id,
            ShipmentEvent.product_id == product_id,
            ShipmentEvent.status == "PENDING",
        )
    )
    return int(result.scalar() or 0)


async def _merge_once(
    session_factory: async_sessionmaker[AsyncSession],
    account_id: uuid.UUID,
    plan_id: uuid.UUID,
    lock_key: int,
) -> MergeResult:
    settings = get_settings()
    async with MergeUnitOfWork(
        session_factory, account_id, lock_key, settings.merge_lock_timeout_seconds
    ) as uow:
        plan = await get_plan(uow.session, account_id, plan_id, for_update=True)
        ensure_draft(plan, "merge")
        strategy = plan.merge_strategy
        details = await get_plan_details(uow.session, plan_id)

        try:
            deleted = 0
            if strategy == "replace":
                deleted = await uow.delete_pending_events(plan)
            inserted = await uow.insert_events(plan, details)

            merged_at = datetime.utcnow()
            plan.status = "merged"
            plan.merged_at = merged_at
            await uow.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "allocation.merge_rolled_back",
                plan_id=str(plan_id),
                strategy=strategy,
                error=str(exc),
            )
            raise MergeAtomicityFailure(
                f"Merge of plan {plan_id} failed and was rolled back; no events were changed"
            ) from exc

    logger.info(
        "allocation.merge_committed",
        plan_id=str(plan_id),
        strategy=strategy,
        deleted_events=deleted,
        inserted_events=inserted,
    )
    return MergeResult(
        plan_id=plan_id,
        strategy=strategy,
        deleted_events=deleted,
        inserted_events=inserted,
        merged_at=merged_at,
    )


def _log_conflict(retry_state) -> None:
    logger.warning(
        "allocation.merge_conflict",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()),
    )


async def merge_plan(
    session_factory: async_sessionmaker[AsyncSession],
    account_id: uuid.UUID,
    plan_id: uuid.UUID,
) -> MergeResult:
    """Merge a draft plan into shipment_events using its merge strategy."""
    settings = get_settings()

    async with session_factory() as db:
        plan = await get_plan(db, account_id, plan_id)
        ensure_draft(plan, "merge")
        lock_key = tuple_lock_key(plan.account_id, plan.carrier_id, plan.product_id)

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(MergeConflict),
        stop=stop_after_attempt(settings.merge_retry_attempts),
        wait=wait_exponential(multiplier=0.1, max=settings.merge_retry_max_wait_seconds),
        before_sleep=_log_conflict,
        reraise=True,
    ):
        with attempt:
            return await _merge_once(session_factory, account_id, plan_id, lock_key)


async def cancel_plan(db: AsyncSession, account_id: uuid.UUID, plan_id: uuid.UUID) -> AllocationPlan:
    """draft → cancelled; the detail rows are discarded."""
    plan = await get_plan(db, account_id, plan_id, for_update=True)
    ensure_draft(plan, "cancel")
    await db.execute(delete(AllocationPlanDetail).where(AllocationPlanDetail.plan_id == plan_id))
    plan.status = "cancelled"
    plan.cancelled_at = datetime.utcnow()
    await db.commit()
    logger.info("allocation.plan_cancelled", plan_id=str(plan_id))
    return plan


async def delete_draft_plan(db: AsyncSession, account_id: uuid.UUID, plan_id: uuid.UUID) -> None:
    plan = await get_plan(db, account_id, plan_id, for_update=True)
    ensure_draft(plan, "delete")
    await db.execute(delete(AllocationPlanDetail).where(AllocationPlanDetail.plan_id == plan_id))
    await db.execute(delete(AllocationPlan).where(AllocationPlan.plan_id == plan_id))
    await db.commit()
    logger.info("allocation.plan_deleted", plan_id=str(plan_id))
