"""
Initial schema - all 14 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _account_fk() -> sa.Column:
    return sa.Column("account_id", UUID(as_uuid=True), sa.ForeignKey("accounts.account_id"), nullable=False)


def _pct(name: str) -> sa.Column:
    return sa.Column(name, sa.Float, nullable=False, server_default="0")


MONTHS = [
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
]


def upgrade() -> None:
    # 1. Accounts
    op.create_table(
        "accounts",
        _uuid_pk("account_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_account_status"),
    )

    # 2. Carriers
    op.create_table(
        "carriers",
        _uuid_pk("carrier_id"),
        _account_fk(),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("commercial_name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("account_id", "code", name="uq_carrier_code_per_account"),
    )
    op.create_index("ix_carriers_account", "carriers", ["account_id"])

    # 3. Products
    op.create_table(
        "products",
        _uuid_pk("product_id"),
        _account_fk(),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("account_id", "code", name="uq_product_code_per_account"),
    )
    op.create_index("ix_products_account", "products", ["account_id"])

    # 4. Carrier ↔ Product
    op.create_table(
        "carrier_products",
        _uuid_pk("id"),
        _account_fk(),
        sa.Column("carrier_id", UUID(as_uuid=True), sa.ForeignKey("carriers.carrier_id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.UniqueConstraint("carrier_id", "product_id", name="uq_carrier_product"),
    )

    # 5. Cities
    op.create_table(
        "cities",
        sa.Column("city_id", sa.Integer, primary_key=True, autoincrement=True),
        _account_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("classification", sa.String(1), nullable=False),
        sa.UniqueConstraint("account_id", "name", name="uq_city_name_per_account"),
        sa.CheckConstraint("classification IN ('A', 'B', 'C')", name="ck_city_classification"),
    )
    op.create_index("ix_cities_account", "cities", ["account_id"])

    # 6. Panelists
    op.create_table(
        "panelists",
        _uuid_pk("panelist_id"),
        _account_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.CheckConstraint("status IN ('active', 'inactive', 'vacation')", name="ck_panelist_status"),
    )
    op.create_index("ix_panelists_account", "panelists", ["account_id"])

    # 7. Nodes
    op.create_table(
        "nodes",
        _uuid_pk("node_id"),
        _account_fk(),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("city_id", sa.Integer, sa.ForeignKey("cities.city_id"), nullable=False),
        sa.Column("assigned_panelist_id", UUID(as_uuid=True), sa.ForeignKey("panelists.panelist_id")),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.UniqueConstraint("account_id", "code", name="uq_node_code_per_account"),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_node_status"),
    )
    op.create_index("ix_nodes_account_city", "nodes", ["account_id", "city_id"])

    # 8. Classification allocation matrix
    op.create_table(
        "classification_allocation_matrix",
        _uuid_pk("id"),
        _account_fk(),
        sa.Column("destination_classification", sa.String(1), nullable=False),
        _pct("pct_from_a"),
        _pct("pct_from_b"),
        _pct("pct_from_c"),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("account_id", "destination_classification", name="uq_matrix_row_per_account"),
        sa.CheckConstraint("destination_classification IN ('A', 'B', 'C')", name="ck_matrix_classification"),
    )

    # 9. City allocation requirements
    op.create_table(
        "city_allocation_requirements",
        _uuid_pk("id"),
        _account_fk(),
        sa.Column("city_id", sa.Integer, sa.ForeignKey("cities.city_id"), nullable=False),
        sa.Column("from_classification_a", sa.Integer, nullable=False, server_default="0"),
        sa.Column("from_classification_b", sa.Integer, nullable=False, server_default="0"),
        sa.Column("from_classification_c", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("account_id", "city_id", name="uq_city_requirement_per_account"),
        sa.CheckConstraint(
            "from_classification_a >= 0 AND from_classification_b >= 0 AND from_classification_c >= 0",
            name="ck_city_requirement_non_negative",
        ),
    )

    # 10. Product seasonality
    op.create_table(
        "product_seasonality",
        _uuid_pk("id"),
        _account_fk(),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        *[_pct(f"pct_{month}") for month in MONTHS],
        sa.UniqueConstraint("account_id", "product_id", "year", name="uq_seasonality_product_year"),
    )

    # 11. Capacity config
    op.create_table(
        "account_capacity_config",
        _uuid_pk("id"),
        sa.Column(
            "account_id",
            UUID(as_uuid=True),
            sa.ForeignKey("accounts.account_id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("max_events_per_panelist_week", sa.Integer, nullable=False, server_default="10"),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("max_events_per_panelist_week >= 0", name="ck_capacity_non_negative"),
    )

    # 12. Allocation plans (before shipment_events, which references it)
    op.create_table(
        "allocation_plans",
        _uuid_pk("plan_id"),
        _account_fk(),
        sa.Column("carrier_id", UUID(as_uuid=True), sa.ForeignKey("carriers.carrier_id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("end_date", sa.Date, nullable=False),
        sa.Column("total_events", sa.Integer, nullable=False),
        sa.Column("calculated_events", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unassigned_events", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_events_per_week", sa.Integer, nullable=False),
        sa.Column("merge_strategy", sa.String(10), nullable=False, server_default="append"),
        sa.Column("status", sa.String(10), nullable=False, server_default="draft"),
        sa.Column("unassigned_breakdown", sa.JSON),
        sa.Column("city_breakdown", sa.JSON),
        sa.Column("generation_params", sa.JSON),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("merged_at", sa.DateTime),
        sa.Column("cancelled_at", sa.DateTime),
        sa.CheckConstraint("merge_strategy IN ('append', 'replace')", name="ck_plan_merge_strategy"),
        sa.CheckConstraint("status IN ('draft', 'merged', 'cancelled')", name="ck_plan_status"),
        sa.CheckConstraint("end_date > start_date", name="ck_plan_period"),
    )
    op.create_index("ix_allocation_plans_account_status", "allocation_plans", ["account_id", "status"])

    # 13. Allocation plan details
    op.create_table(
        "allocation_plan_details",
        _uuid_pk("detail_id"),
        sa.Column(
            "plan_id",
            UUID(as_uuid=True),
            sa.ForeignKey("allocation_plans.plan_id", ondelete="CASCADE"),
            nullable=False,
        ),
        _account_fk(),
        sa.Column("sequence", sa.Integer, nullable=False, server_default="0"),
        sa.Column("origin_node", sa.String(50), nullable=False),
        sa.Column("destination_node", sa.String(50), nullable=False),
        sa.Column("scheduled_date", sa.Date, nullable=False),
        sa.Column("notes", sa.Text),
    )
    op.create_index("ix_plan_details_plan_date", "allocation_plan_details", ["plan_id", "scheduled_date"])

    # 14. Shipment events
    op.create_table(
        "shipment_events",
        _uuid_pk("event_id"),
        _account_fk(),
        sa.Column("carrier_id", UUID(as_uuid=True), sa.ForeignKey("carriers.carrier_id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("origin_node", sa.String(50), nullable=False),
        sa.Column("destination_node", sa.String(50), nullable=False),
        sa.Column("scheduled_date", sa.Date, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("creation_reason", sa.String(30), nullable=False, server_default="scheduled"),
        sa.Column("notes", sa.Text),
        sa.Column("source_plan_id", UUID(as_uuid=True), sa.ForeignKey("allocation_plans.plan_id")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('PENDING', 'SENT', 'RECEIVED', 'VALIDATED', 'CANCELLED')",
            name="ck_shipment_event_status",
        ),
    )
    op.create_index(
        "ix_shipment_events_tuple_status",
        "shipment_events",
        ["account_id", "carrier_id", "product_id", "status"],
    )
    op.create_index("ix_shipment_events_account_date", "shipment_events", ["account_id", "scheduled_date"])


def downgrade() -> None:
    tables = [
        "shipment_events",
        "allocation_plan_details",
        "allocation_plans",
        "account_capacity_config",
        "product_seasonality",
        "city_allocation_requirements",
        "classification_allocation_matrix",
        "nodes",
        "panelists",
        "cities",
        "carrier_products",
        "products",
        "carriers",
        "accounts",
    ]
    for table in tables:
        op.drop_table(table)
