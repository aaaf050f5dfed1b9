"""
Allocation Worker — background plan generation and merges.

Large periods (many weeks × many nodes) can take longer than an HTTP request
should; these tasks run the same engine off the request path.

Queue: allocation
"""

import asyncio
import uuid
from datetime import date, datetime, timezone

import structlog

from allocation.errors import AllocationError
from db.session import create_session_factory
from workers.celery_app import celery_app

logger = structlog.get_logger()


def _plan_request(account_id: str, payload: dict):
    from allocation.assembler import PlanRequest

    return PlanRequest(
        account_id=uuid.UUID(account_id),
        carrier_id=uuid.UUID(str(payload["carrier_id"])),
        product_id=uuid.UUID(str(payload["product_id"])),
        start_date=date.fromisoformat(str(payload["start_date"])),
        end_date=date.fromisoformat(str(payload["end_date"])),
        total_events=int(payload["total_events"]),
        merge_strategy=payload.get("merge_strategy", "append"),
        max_events_per_week=payload.get("max_events_per_week"),
        weight_source=payload.get("weight_source", "auto"),
        created_by=payload.get("created_by", "worker"),
    )


@celery_app.task(
    name="workers.allocation.generate_allocation_plan",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def generate_allocation_plan(self, account_id: str, request: dict):
    """
    Generate and persist a draft plan.

    Args:
        account_id: Tenant ID
        request: carrier_id, product_id, start_date, end_date (ISO), total_events,
                 and optionally merge_strategy, max_events_per_week, weight_source
    """
    run_id = self.request.id or "manual"
    logger.info("allocation_worker.generate_started", account_id=account_id, run_id=run_id)

    async def _generate():
        from allocation.assembler import generate_allocation_plan as generate
        from core.config import get_settings

        settings = get_settings()
        engine, async_session = create_session_factory(settings.database_url)
        try:
            async with async_session() as db:
                plan, draft = await generate(db, _plan_request(account_id, request))
        finally:
            await engine.dispose()

        summary = {
            "status": "success",
            "account_id": account_id,
            "run_id": run_id,
            "plan_id": str(plan.plan_id),
            "calculated_events": draft.calculated_events,
            "placed_events": draft.placed_events,
            "unassigned_events": draft.unassigned_events,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("allocation_worker.generate_completed", **summary)
        return summary

    try:
        return asyncio.run(_generate())
    except AllocationError as exc:
        logger.warning("allocation_worker.generate_rejected", account_id=account_id, error=str(exc))
        return {"status": "failed", "account_id": account_id, "run_id": run_id, "reason": str(exc)}
    except Exception as exc:
        logger.error("allocation_worker.generate_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.allocation.merge_allocation_plan",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def merge_allocation_plan(self, account_id: str, plan_id: str):
    """Merge a draft plan with its stored strategy."""
    run_id = self.request.id or "manual"
    logger.info("allocation_worker.merge_started", account_id=account_id, plan_id=plan_id, run_id=run_id)

    async def _merge():
        from allocation.reconciler import merge_plan
        from core.config import get_settings

        settings = get_settings()
        engine, async_session = create_session_factory(settings.database_url)
        try:
            result = await merge_plan(async_session, uuid.UUID(account_id), uuid.UUID(plan_id))
        finally:
            await engine.dispose()

        summary = {
            "status": "success",
            "account_id": account_id,
            "run_id": run_id,
            "plan_id": plan_id,
            "strategy": result.strategy,
            "deleted_events": result.deleted_events,
            "inserted_events": result.inserted_events,
            "merged_at": result.merged_at.isoformat(),
        }
        logger.info("allocation_worker.merge_completed", **summary)
        return summary

    try:
        return asyncio.run(_merge())
    except AllocationError as exc:
        # Not retried: a wrong state or a rolled-back merge needs a human decision.
        logger.warning("allocation_worker.merge_rejected", plan_id=plan_id, error=str(exc))
        return {"status": "failed", "account_id": account_id, "plan_id": plan_id, "reason": str(exc)}
    except Exception as exc:
        logger.error("allocation_worker.merge_failed", plan_id=plan_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
