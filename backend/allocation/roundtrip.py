"""
Round-trip Validator — export plan rows for review, re-import edited rows.

Import contract:
  - every row needs origin_node, destination_node and scheduled_date
  - node codes must be non-empty after trimming
  - scheduled_date must parse as an ISO calendar date
  Rows failing validation are dropped without per-row diagnostics. Surviving
  rows replace the plan's whole detail set and calculated_events becomes
  len(valid rows); unassigned_events is left as is and is stale afterwards.

Export adds origin_city, destination_city and classification (destination)
for review; those columns are ignored on import.
"""

import io
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

import pandas as pd
import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.errors import EmptyPlanImport
from allocation.plans import ensure_draft, get_plan, get_plan_details, node_city_lookup
from db.models import AllocationPlan, AllocationPlanDetail

logger = structlog.get_logger()

REQUIRED_COLUMNS = ["origin_node", "destination_node", "scheduled_date"]
EXPORT_COLUMNS = [
    "scheduled_date",
    "origin_node",
    "origin_city",
    "destination_node",
    "destination_city",
    "classification",
    "notes",
]


def validate_rows(rows: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    """Keep only rows honoring the import contract, normalized to REQUIRED_COLUMNS + notes."""
    df = pd.DataFrame(list(rows))
    for col in [*REQUIRED_COLUMNS, "notes"]:
        if col not in df.columns:
            df[col] = None
    if df.empty:
        return df[[*REQUIRED_COLUMNS, "notes"]]

    out = df[[*REQUIRED_COLUMNS, "notes"]].copy()
    for col in ("origin_node", "destination_node"):
        out[col] = out[col].where(out[col].notna(), "").astype(str).str.strip()
    raw_dates = out["scheduled_date"].where(out["scheduled_date"].notna(), "").astype(str).str.strip()
    out["scheduled_date"] = pd.to_datetime(raw_dates, errors="coerce", format="ISO8601")

    valid = (out["origin_node"] != "") & (out["destination_node"] != "") & out["scheduled_date"].notna()
    out = out[valid].copy()
    out["scheduled_date"] = out["scheduled_date"].dt.date
    out["notes"] = pd.Series(
        [note.strip() if isinstance(note, str) and note.strip() else None for note in out["notes"]],
        index=out.index,
        dtype=object,
    )
    return out.reset_index(drop=True)


def parse_csv(text: str) -> list[dict[str, Any]]:
    """CSV text → row dicts; every value read as a string."""
    if not text.strip():
        return []
    df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    return df.to_dict(orient="records")


def rows_to_csv(rows: list[dict[str, Any]]) -> str:
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS).to_csv(index=False)


async def export_plan_rows(db: AsyncSession, account_id: uuid.UUID, plan_id: uuid.UUID) -> list[dict[str, Any]]:
    await get_plan(db, account_id, plan_id)
    details = await get_plan_details(db, plan_id)
    codes = {d.origin_node for d in details} | {d.destination_node for d in details}
    lookup = await node_city_lookup(db, account_id, codes)

    rows = []
    for detail in details:
        origin_city, _ = lookup.get(detail.origin_node, ("Unknown", "N/A"))
        destination_city, classification = lookup.get(detail.destination_node, ("Unknown", "N/A"))
        rows.append(
            {
                "scheduled_date": detail.scheduled_date.isoformat(),
                "origin_node": detail.origin_node,
                "origin_city": origin_city,
                "destination_node": detail.destination_node,
                "destination_city": destination_city,
                "classification": classification,
                "notes": detail.notes,
            }
        )
    return rows


async def import_plan_rows(
    db: AsyncSession,
    account_id: uuid.UUID,
    plan_id: uuid.UUID,
    rows: Iterable[Mapping[str, Any]],
) -> AllocationPlan:
    """Replace a draft plan's details with the valid subset of rows."""
    rows = list(rows)
    plan = await get_plan(db, account_id, plan_id, for_update=True)
    ensure_draft(plan, "import rows into")

    valid = validate_rows(rows)
    if valid.empty:
        logger.warning("allocation.import_rejected", plan_id=str(plan_id), received=len(rows))
        raise EmptyPlanImport("No valid rows found in import")

    await db.execute(delete(AllocationPlanDetail).where(AllocationPlanDetail.plan_id == plan_id))
    db.add_all(
        [
            AllocationPlanDetail(
                plan_id=plan_id,
                account_id=account_id,
                sequence=i,
                origin_node=row.origin_node,
                destination_node=row.destination_node,
                scheduled_date=row.scheduled_date,
                notes=row.notes if isinstance(row.notes, str) else None,
            )
            for i, row in enumerate(valid.itertuples(index=False))
        ]
    )
    plan.calculated_events = len(valid)
    await db.commit()

    logger.info(
        "allocation.plan_rows_imported",
        plan_id=str(plan_id),
        received=len(rows),
        accepted=len(valid),
        dropped=len(rows) - len(valid),
    )
    return plan
