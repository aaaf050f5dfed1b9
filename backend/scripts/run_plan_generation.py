#!/usr/bin/env python3
"""Generate (and optionally merge) an allocation plan from the command line."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import uuid
from datetime import date

# Add backend to path when executed as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from allocation.assembler import PlanRequest, build_plan_draft, generate_allocation_plan
from allocation.errors import AllocationError
from allocation.reconciler import merge_plan
from core.config import get_settings
from db.session import create_session_factory


async def _run(args: argparse.Namespace) -> dict:
    engine, session_factory = create_session_factory(get_settings().database_url)
    request = PlanRequest(
        account_id=uuid.UUID(args.account_id),
        carrier_id=uuid.UUID(args.carrier_id),
        product_id=uuid.UUID(args.product_id),
        start_date=date.fromisoformat(args.start),
        end_date=date.fromisoformat(args.end),
        total_events=args.total_events,
        merge_strategy=args.strategy,
        max_events_per_week=args.max_per_week,
        weight_source=args.weight_source,
        created_by="cli",
    )
    try:
        async with session_factory() as db:
            if args.dry_run:
                draft = await build_plan_draft(db, request)
                plan_id = None
            else:
                plan, draft = await generate_allocation_plan(db, request)
                plan_id = plan.plan_id

        summary = {
            "plan_id": str(plan_id) if plan_id else None,
            "calculated_events": draft.calculated_events,
            "placed_events": draft.placed_events,
            "unassigned_events": draft.unassigned_events,
            "weeks": len(draft.weeks),
            "unassigned_breakdown": draft.unassigned_breakdown,
        }
        if args.merge and plan_id:
            result = await merge_plan(session_factory, request.account_id, plan_id)
            summary["merge"] = {
                "strategy": result.strategy,
                "deleted_events": result.deleted_events,
                "inserted_events": result.inserted_events,
            }
        return summary
    finally:
        await engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate an allocation plan for a carrier/product over a period")
    parser.add_argument("--account-id", required=True)
    parser.add_argument("--carrier-id", required=True)
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--start", required=True, help="Period start (YYYY-MM-DD)")
    parser.add_argument("--end", required=True, help="Period end, inclusive (YYYY-MM-DD)")
    parser.add_argument("--total-events", type=int, required=True, help="Annual event total")
    parser.add_argument("--strategy", choices=["append", "replace"], default="append")
    parser.add_argument("--max-per-week", type=int, default=None, help="Override the account weekly cap")
    parser.add_argument(
        "--weight-source",
        choices=["auto", "city_requirements", "classification_matrix"],
        default="auto",
    )
    parser.add_argument("--dry-run", action="store_true", help="Assemble without saving a plan")
    parser.add_argument("--merge", action="store_true", help="Merge the generated plan immediately")
    args = parser.parse_args()

    try:
        summary = asyncio.run(_run(args))
    except AllocationError as exc:
        print(f"Plan generation failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
