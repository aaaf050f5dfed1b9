"""
PanelOps Database Models

14 tables for the panel allocation platform.
Multi-tenant via account_id on all tables.

Tables:
  Topology & Catalog (1-7):
  1. accounts                   - Tenant organizations
  2. carriers                   - Carriers moving shipment events
  3. products                   - Product catalog per account
  4. carrier_products           - Which carrier serves which product
  5. cities                     - Cities with their A/B/C classification
  6. panelists                  - People sending/receiving test shipments
  7. nodes                      - Send/receive points, one city each

  Allocation Configuration (8-11):
  8. classification_allocation_matrix - Origin mix per destination classification (%)
  9. city_allocation_requirements     - Absolute per-city requirements by origin class
  10. product_seasonality             - Monthly % curve per product and year
  11. account_capacity_config         - Weekly cap per panelist

  Events & Plans (12-14):
  12. shipment_events           - Production event store
  13. allocation_plans          - Generated plan headers (draft/merged/cancelled)
  14. allocation_plan_details   - Dated origin→destination rows of a plan
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

CLASSIFICATIONS = ("A", "B", "C")
MONTH_COLUMNS = (
    "pct_january",
    "pct_february",
    "pct_march",
    "pct_april",
    "pct_may",
    "pct_june",
    "pct_july",
    "pct_august",
    "pct_september",
    "pct_october",
    "pct_november",
    "pct_december",
)

# ─── 1. Accounts ────────────────────────────────────────────────────────────


class Account(Base):
    __tablename__ = "accounts"

    account_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (CheckConstraint("status IN ('active', 'inactive')", name="ck_account_status"),)

    cities = relationship("City", back_populates="account", cascade="all, delete-orphan")
    nodes = relationship("Node", back_populates="account", cascade="all, delete-orphan")


# ─── 2. Carriers ────────────────────────────────────────────────────────────


class Carrier(Base):
    __tablename__ = "carriers"

    carrier_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    code = Column(String(50), nullable=False)
    commercial_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "code", name="uq_carrier_code_per_account"),
        Index("ix_carriers_account", "account_id"),
    )


# ─── 3. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "code", name="uq_product_code_per_account"),
        Index("ix_products_account", "account_id"),
    )


# ─── 4. Carrier ↔ Product ───────────────────────────────────────────────────


class CarrierProduct(Base):
    __tablename__ = "carrier_products"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    carrier_id = Column(GUID(), ForeignKey("carriers.carrier_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)

    __table_args__ = (UniqueConstraint("carrier_id", "product_id", name="uq_carrier_product"),)


# ─── 5. Cities ──────────────────────────────────────────────────────────────


class City(Base):
    __tablename__ = "cities"

    city_id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    name = Column(String(255), nullable=False)
    classification = Column(String(1), nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_city_name_per_account"),
        CheckConstraint("classification IN ('A', 'B', 'C')", name="ck_city_classification"),
        Index("ix_cities_account", "account_id"),
    )

    account = relationship("Account", back_populates="cities")
    nodes = relationship("Node", back_populates="city")


# ─── 6. Panelists ───────────────────────────────────────────────────────────


class Panelist(Base):
    __tablename__ = "panelists"

    panelist_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    status = Column(String(20), nullable=False, default="active")

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'vacation')", name="ck_panelist_status"),
        Index("ix_panelists_account", "account_id"),
    )


# ─── 7. Nodes ───────────────────────────────────────────────────────────────


class Node(Base):
    __tablename__ = "nodes"

    node_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    code = Column(String(50), nullable=False)
    city_id = Column(Integer, ForeignKey("cities.city_id"), nullable=False)
    assigned_panelist_id = Column(GUID(), ForeignKey("panelists.panelist_id"), nullable=True)
    status = Column(String(20), nullable=False, default="active")

    __table_args__ = (
        UniqueConstraint("account_id", "code", name="uq_node_code_per_account"),
        CheckConstraint("status IN ('active', 'inactive')", name="ck_node_status"),
        Index("ix_nodes_account_city", "account_id", "city_id"),
    )

    account = relationship("Account", back_populates="nodes")
    city = relationship("City", back_populates="nodes")


# ─── 8. Classification Allocation Matrix ───────────────────────────────────


class ClassificationMatrixRow(Base):
    """For one destination classification, the % of volume sourced from A/B/C."""

    __tablename__ = "classification_allocation_matrix"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    destination_classification = Column(String(1), nullable=False)
    pct_from_a = Column(Float, nullable=False, default=0.0)
    pct_from_b = Column(Float, nullable=False, default=0.0)
    pct_from_c = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "destination_classification", name="uq_matrix_row_per_account"),
        CheckConstraint("destination_classification IN ('A', 'B', 'C')", name="ck_matrix_classification"),
    )


# ─── 9. City Allocation Requirements ───────────────────────────────────────


class CityAllocationRequirement(Base):
    """Absolute per-city requirement counts, split by origin classification."""

    __tablename__ = "city_allocation_requirements"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    city_id = Column(Integer, ForeignKey("cities.city_id"), nullable=False)
    from_classification_a = Column(Integer, nullable=False, default=0)
    from_classification_b = Column(Integer, nullable=False, default=0)
    from_classification_c = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("account_id", "city_id", name="uq_city_requirement_per_account"),
        CheckConstraint(
            "from_classification_a >= 0 AND from_classification_b >= 0 AND from_classification_c >= 0",
            name="ck_city_requirement_non_negative",
        ),
    )


# ─── 10. Product Seasonality ───────────────────────────────────────────────


class ProductSeasonality(Base):
    __tablename__ = "product_seasonality"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    year = Column(Integer, nullable=False)
    pct_january = Column(Float, nullable=False, default=0.0)
    pct_february = Column(Float, nullable=False, default=0.0)
    pct_march = Column(Float, nullable=False, default=0.0)
    pct_april = Column(Float, nullable=False, default=0.0)
    pct_may = Column(Float, nullable=False, default=0.0)
    pct_june = Column(Float, nullable=False, default=0.0)
    pct_july = Column(Float, nullable=False, default=0.0)
    pct_august = Column(Float, nullable=False, default=0.0)
    pct_september = Column(Float, nullable=False, default=0.0)
    pct_october = Column(Float, nullable=False, default=0.0)
    pct_november = Column(Float, nullable=False, default=0.0)
    pct_december = Column(Float, nullable=False, default=0.0)

    __table_args__ = (UniqueConstraint("account_id", "product_id", "year", name="uq_seasonality_product_year"),)

    def monthly_percentages(self) -> tuple[float, ...]:
        return tuple(float(getattr(self, col) or 0.0) for col in MONTH_COLUMNS)


# ─── 11. Capacity Config ────────────────────────────────────────────────────


class AccountCapacityConfig(Base):
    __tablename__ = "account_capacity_config"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False, unique=True)
    max_events_per_panelist_week = Column(Integer, nullable=False, default=10)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (CheckConstraint("max_events_per_panelist_week >= 0", name="ck_capacity_non_negative"),)


# ─── 12. Shipment Events (production store) ────────────────────────────────


class ShipmentEvent(Base):
    __tablename__ = "shipment_events"

    event_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    carrier_id = Column(GUID(), ForeignKey("carriers.carrier_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    origin_node = Column(String(50), nullable=False)
    destination_node = Column(String(50), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    creation_reason = Column(String(30), nullable=False, default="scheduled")
    notes = Column(Text)
    source_plan_id = Column(GUID(), ForeignKey("allocation_plans.plan_id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'SENT', 'RECEIVED', 'VALIDATED', 'CANCELLED')",
            name="ck_shipment_event_status",
        ),
        Index("ix_shipment_events_tuple_status", "account_id", "carrier_id", "product_id", "status"),
        Index("ix_shipment_events_account_date", "account_id", "scheduled_date"),
    )


# ─── 13. Allocation Plans ──────────────────────────────────────────────────


class AllocationPlan(Base):
    __tablename__ = "allocation_plans"

    plan_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    carrier_id = Column(GUID(), ForeignKey("carriers.carrier_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_events = Column(Integer, nullable=False)  # annual, source of truth
    calculated_events = Column(Integer, nullable=False, default=0)  # period-bound
    unassigned_events = Column(Integer, nullable=False, default=0)
    max_events_per_week = Column(Integer, nullable=False)
    merge_strategy = Column(String(10), nullable=False, default="append")
    status = Column(String(10), nullable=False, default="draft")
    unassigned_breakdown = Column(JSON, default=list)
    city_breakdown = Column(JSON, default=list)
    generation_params = Column(JSON, default=dict)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    merged_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint("merge_strategy IN ('append', 'replace')", name="ck_plan_merge_strategy"),
        CheckConstraint("status IN ('draft', 'merged', 'cancelled')", name="ck_plan_status"),
        CheckConstraint("end_date > start_date", name="ck_plan_period"),
        Index("ix_allocation_plans_account_status", "account_id", "status"),
    )

    details = relationship(
        "AllocationPlanDetail",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="AllocationPlanDetail.sequence",
    )


# ─── 14. Allocation Plan Details ───────────────────────────────────────────


class AllocationPlanDetail(Base):
    __tablename__ = "allocation_plan_details"

    detail_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    plan_id = Column(GUID(), ForeignKey("allocation_plans.plan_id", ondelete="CASCADE"), nullable=False)
    account_id = Column(GUID(), ForeignKey("accounts.account_id"), nullable=False)
    sequence = Column(Integer, nullable=False, default=0)
    origin_node = Column(String(50), nullable=False)
    destination_node = Column(String(50), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    notes = Column(Text)

    __table_args__ = (Index("ix_plan_details_plan_date", "plan_id", "scheduled_date"),)

    plan = relationship("AllocationPlan", back_populates="details")
