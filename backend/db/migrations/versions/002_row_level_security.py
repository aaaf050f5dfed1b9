"""Tenant isolation RLS policies on every account-scoped table

Policies read app.current_account_id, set per transaction by the API
(get_tenant_db) and by the merge unit of work.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TENANT_TABLES = [
    "carriers",
    "products",
    "carrier_products",
    "cities",
    "panelists",
    "nodes",
    "classification_allocation_matrix",
    "city_allocation_requirements",
    "product_seasonality",
    "account_capacity_config",
    "allocation_plans",
    "allocation_plan_details",
    "shipment_events",
]


def upgrade() -> None:
    for table in TENANT_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY tenant_isolation ON {table} "
            f"USING (account_id::text = current_setting('app.current_account_id', true))"
        )


def downgrade() -> None:
    for table in TENANT_TABLES:
        op.execute(f"DROP POLICY IF EXISTS tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
