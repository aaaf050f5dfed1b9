"""
Configuration Store — reads the snapshot a generation pass runs on.

Read contract:
  - cities + nodes (classification, panelist assignment, status)
  - classification matrix rows and city requirements
  - product seasonality per year of the period
  - capacity (request override → account config → settings default)
  - existing committed load per node per ISO week, inbound and outbound

Stored percentage rows that break their 100 ± tolerance invariant make the
whole read fail with InvalidConfiguration.
"""

import uuid
from collections import defaultdict
from datetime import date, timedelta

import structlog
from sqlalchemy import and_, func, not_, select
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.errors import InvalidConfiguration
from allocation.snapshot import AllocationSnapshot, CityInfo, CityRequirement, MatrixRow, NodeInfo, week_start
from allocation.validation import validate_matrix_rows, validate_seasonality_rows
from core.config import get_settings
from db.models import (
    MONTH_COLUMNS,
    AccountCapacityConfig,
    CarrierProduct,
    City,
    CityAllocationRequirement,
    ClassificationMatrixRow,
    Node,
    ProductSeasonality,
    ShipmentEvent,
)

logger = structlog.get_logger()


class ConfigurationStore:
    """Snapshot reader for one account."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def carrier_serves_product(self, account_id: uuid.UUID, carrier_id: uuid.UUID, product_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(func.count(CarrierProduct.id)).where(
                CarrierProduct.account_id == account_id,
                CarrierProduct.carrier_id == carrier_id,
                CarrierProduct.product_id == product_id,
            )
        )
        return bool(result.scalar())

    async def load_snapshot(
        self,
        account_id: uuid.UUID,
        carrier_id: uuid.UUID,
        product_id: uuid.UUID,
        start_date: date,
        end_date: date,
        *,
        max_events_per_week: int | None = None,
        exclude_replaced_pending: bool = False,
    ) -> AllocationSnapshot:
        cities = await self._load_cities(account_id)
        snapshot = AllocationSnapshot(
            account_id=account_id,
            carrier_id=carrier_id,
            product_id=product_id,
            cities=cities,
            nodes=await self._load_nodes(account_id, cities),
            matrix=await self._load_matrix(account_id),
            city_requirements=await self._load_city_requirements(account_id),
            seasonality=await self._load_seasonality(account_id, product_id, start_date.year, end_date.year),
            max_events_per_week=await self.resolve_capacity(account_id, max_events_per_week),
        )
        snapshot.existing_inbound, snapshot.existing_outbound = await self.existing_load(
            account_id,
            start_date,
            end_date,
            replaced_tuple=(carrier_id, product_id) if exclude_replaced_pending else None,
        )

        logger.info(
            "allocation.snapshot_loaded",
            account_id=str(account_id),
            cities=len(snapshot.cities),
            nodes=len(snapshot.nodes),
            eligible_nodes=len(snapshot.eligible_nodes()),
            matrix_rows=len(snapshot.matrix),
            city_requirements=len(snapshot.city_requirements),
            seasonality_years=sorted(snapshot.seasonality),
            max_events_per_week=snapshot.max_events_per_week,
        )
        return snapshot

    async def resolve_capacity(self, account_id: uuid.UUID, override: int | None = None) -> int:
        if override is not None:
            return override
        result = await self.db.execute(
            select(AccountCapacityConfig.max_events_per_panelist_week).where(
                AccountCapacityConfig.account_id == account_id
            )
        )
        configured = result.scalar_one_or_none()
        if configured is not None:
            return int(configured)
        return get_settings().allocation_default_max_events_per_week

    async def existing_load(
        self,
        account_id: uuid.UUID,
        start_date: date,
        end_date: date,
        replaced_tuple: tuple[uuid.UUID, uuid.UUID] | None = None,
    ) -> tuple[dict[tuple[str, date], int], dict[tuple[str, date], int]]:
        """Committed events per (node, ISO week) for the weeks touching the period."""
        window_start = week_start(start_date)
        window_end = week_start(end_date) + timedelta(days=6)
        filters = [
            ShipmentEvent.account_id == account_id,
            ShipmentEvent.status != "CANCELLED",
            ShipmentEvent.scheduled_date >= window_start,
            ShipmentEvent.scheduled_date <= window_end,
        ]
        if replaced_tuple is not None:
            carrier_id, product_id = replaced_tuple
            filters.append(
                not_(
                    and_(
                        ShipmentEvent.carrier_id == carrier_id,
                        ShipmentEvent.product_id == product_id,
                        ShipmentEvent.status == "PENDING",
                    )
                )
            )

        inbound: dict[tuple[str, date], int] = defaultdict(int)
        outbound: dict[tuple[str, date], int] = defaultdict(int)
        for column, bucket in ((ShipmentEvent.destination_node, inbound), (ShipmentEvent.origin_node, outbound)):
            result = await self.db.execute(
                select(column, ShipmentEvent.scheduled_date, func.count(ShipmentEvent.event_id))
                .where(*filters)
                .group_by(column, ShipmentEvent.scheduled_date)
            )
            for node_code, scheduled, count in result.all():
                bucket[(node_code, week_start(scheduled))] += int(count)
        return dict(inbound), dict(outbound)

    async def _load_cities(self, account_id: uuid.UUID) -> dict[int, CityInfo]:
        result = await self.db.execute(select(City).where(City.account_id == account_id))
        return {
            city.city_id: CityInfo(city_id=city.city_id, name=city.name, classification=city.classification)
            for city in result.scalars().all()
        }

    async def _load_nodes(self, account_id: uuid.UUID, cities: dict[int, CityInfo]) -> list[NodeInfo]:
        result = await self.db.execute(select(Node).where(Node.account_id == account_id).order_by(Node.code))
        nodes = []
        for node in result.scalars().all():
            city = cities.get(node.city_id)
            if city is None:
                continue
            nodes.append(
                NodeInfo(
                    code=node.code,
                    city_id=node.city_id,
                    classification=city.classification,
                    has_panelist=node.assigned_panelist_id is not None,
                    status=node.status,
                )
            )
        return nodes

    async def _load_matrix(self, account_id: uuid.UUID) -> dict[str, MatrixRow]:
        result = await self.db.execute(
            select(ClassificationMatrixRow).where(ClassificationMatrixRow.account_id == account_id)
        )
        rows = result.scalars().all()
        problems = validate_matrix_rows(
            [
                {
                    "destination_classification": row.destination_classification,
                    "pct_from_a": row.pct_from_a,
                    "pct_from_b": row.pct_from_b,
                    "pct_from_c": row.pct_from_c,
                }
                for row in rows
            ],
            get_settings().allocation_percentage_tolerance,
        )
        if problems:
            raise InvalidConfiguration("Stored classification matrix is invalid", problems)
        return {
            row.destination_classification: MatrixRow(
                destination_classification=row.destination_classification,
                pct_from_a=float(row.pct_from_a),
                pct_from_b=float(row.pct_from_b),
                pct_from_c=float(row.pct_from_c),
            )
            for row in rows
        }

    async def _load_city_requirements(self, account_id: uuid.UUID) -> dict[int, CityRequirement]:
        result = await self.db.execute(
            select(CityAllocationRequirement).where(CityAllocationRequirement.account_id == account_id)
        )
        return {
            row.city_id: CityRequirement(
                city_id=row.city_id,
                from_classification_a=row.from_classification_a or 0,
                from_classification_b=row.from_classification_b or 0,
                from_classification_c=row.from_classification_c or 0,
            )
            for row in result.scalars().all()
        }

    async def _load_seasonality(
        self,
        account_id: uuid.UUID,
        product_id: uuid.UUID,
        first_year: int,
        last_year: int,
    ) -> dict[int, tuple[float, ...]]:
        result = await self.db.execute(
            select(ProductSeasonality).where(
                ProductSeasonality.account_id == account_id,
                ProductSeasonality.product_id == product_id,
                ProductSeasonality.year >= first_year,
                ProductSeasonality.year <= last_year,
            )
        )
        records = result.scalars().all()
        problems = validate_seasonality_rows(
            [{"year": r.year, **{col: getattr(r, col) for col in MONTH_COLUMNS}} for r in records],
            get_settings().allocation_percentage_tolerance,
        )
        if problems:
            raise InvalidConfiguration("Stored product seasonality is invalid", problems)
        return {r.year: r.monthly_percentages() for r in records}
