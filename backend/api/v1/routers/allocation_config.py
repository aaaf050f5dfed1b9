"""
Allocation Config Router — matrix, city requirements, seasonality, capacity.

Percentage tables are validated on write (100 ± tolerance per row) so the
engine never reads a broken curve or mix.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from allocation.validation import validate_matrix_rows, validate_seasonality_rows
from api.deps import get_account_id, get_tenant_db
from core.config import get_settings
from db.models import (
    MONTH_COLUMNS,
    AccountCapacityConfig,
    City,
    CityAllocationRequirement,
    ClassificationMatrixRow,
    Product,
    ProductSeasonality,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/allocation-config", tags=["allocation-config"])


# ─── Schemas ────────────────────────────────────────────────────────────────

class MatrixRowPayload(BaseModel):
    destination_classification: str = Field(..., min_length=1, max_length=1)
    pct_from_a: float = 0.0
    pct_from_b: float = 0.0
    pct_from_c: float = 0.0

    model_config = {"from_attributes": True}


class CityRequirementPayload(BaseModel):
    city_id: int
    from_classification_a: int = Field(0, ge=0)
    from_classification_b: int = Field(0, ge=0)
    from_classification_c: int = Field(0, ge=0)

    model_config = {"from_attributes": True}


class SeasonalityPayload(BaseModel):
    pct_january: float = 0.0
    pct_february: float = 0.0
    pct_march: float = 0.0
    pct_april: float = 0.0
    pct_may: float = 0.0
    pct_june: float = 0.0
    pct_july: float = 0.0
    pct_august: float = 0.0
    pct_september: float = 0.0
    pct_october: float = 0.0
    pct_november: float = 0.0
    pct_december: float = 0.0

    model_config = {"from_attributes": True}


class SeasonalityResponse(SeasonalityPayload):
    product_id: UUID
    year: int
    configured: bool


class CapacityPayload(BaseModel):
    max_events_per_panelist_week: int = Field(..., ge=0)


class CapacityResponse(CapacityPayload):
    configured: bool


def _reject(problems: list[str]) -> HTTPException:
    return HTTPException(status_code=422, detail={"message": "Invalid configuration", "problems": problems})


# ─── Classification matrix ──────────────────────────────────────────────────

@router.get("/matrix", response_model=list[MatrixRowPayload])
async def get_classification_matrix(
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    result = await db.execute(
        select(ClassificationMatrixRow)
        .where(ClassificationMatrixRow.account_id == account_id)
        .order_by(ClassificationMatrixRow.destination_classification)
    )
    return result.scalars().all()


@router.put("/matrix", response_model=list[MatrixRowPayload])
async def replace_classification_matrix(
    rows: list[MatrixRowPayload],
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """Replace the whole matrix; every row must sum to 100."""
    payload = [row.model_dump() for row in rows]
    problems = validate_matrix_rows(payload, get_settings().allocation_percentage_tolerance)
    if problems:
        raise _reject(problems)

    await db.execute(delete(ClassificationMatrixRow).where(ClassificationMatrixRow.account_id == account_id))
    db.add_all([ClassificationMatrixRow(account_id=account_id, **row) for row in payload])
    await db.commit()
    logger.info("allocation_config.matrix_replaced", account_id=str(account_id), rows=len(payload))
    return sorted(rows, key=lambda r: r.destination_classification)


# ─── City requirements ──────────────────────────────────────────────────────

@router.get("/city-requirements", response_model=list[CityRequirementPayload])
async def get_city_requirements(
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    result = await db.execute(
        select(CityAllocationRequirement)
        .where(CityAllocationRequirement.account_id == account_id)
        .order_by(CityAllocationRequirement.city_id)
    )
    return result.scalars().all()


@router.put("/city-requirements", response_model=list[CityRequirementPayload])
async def replace_city_requirements(
    rows: list[CityRequirementPayload],
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """Replace all per-city requirement counts."""
    city_ids = [row.city_id for row in rows]
    if len(set(city_ids)) != len(city_ids):
        raise _reject(["city_id values must be unique"])
    result = await db.execute(select(City.city_id).where(City.account_id == account_id))
    unknown = sorted(set(city_ids) - set(result.scalars().all()))
    if unknown:
        raise _reject([f"city_id={cid}: unknown city" for cid in unknown])

    await db.execute(delete(CityAllocationRequirement).where(CityAllocationRequirement.account_id == account_id))
    db.add_all([CityAllocationRequirement(account_id=account_id, **row.model_dump()) for row in rows])
    await db.commit()
    logger.info("allocation_config.city_requirements_replaced", account_id=str(account_id), rows=len(rows))
    return sorted(rows, key=lambda r: r.city_id)


# ─── Seasonality ────────────────────────────────────────────────────────────

@router.get("/seasonality/{product_id}/{year}", response_model=SeasonalityResponse)
async def get_product_seasonality(
    product_id: UUID,
    year: int,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    """Stored curve, or the uniform default when none is configured."""
    result = await db.execute(
        select(ProductSeasonality).where(
            ProductSeasonality.account_id == account_id,
            ProductSeasonality.product_id == product_id,
            ProductSeasonality.year == year,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        uniform = round(100.0 / 12, 4)
        return SeasonalityResponse(
            product_id=product_id, year=year, configured=False, **{col: uniform for col in MONTH_COLUMNS}
        )
    return SeasonalityResponse(
        product_id=product_id,
        year=year,
        configured=True,
        **{col: getattr(record, col) for col in MONTH_COLUMNS},
    )


@router.put("/seasonality/{product_id}/{year}", response_model=SeasonalityResponse)
async def upsert_product_seasonality(
    product_id: UUID,
    year: int,
    body: SeasonalityPayload,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    product = await db.execute(
        select(Product.product_id).where(Product.account_id == account_id, Product.product_id == product_id)
    )
    if product.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Product not found")

    values = body.model_dump()
    problems = validate_seasonality_rows([{"year": year, **values}], get_settings().allocation_percentage_tolerance)
    if problems:
        raise _reject(problems)

    result = await db.execute(
        select(ProductSeasonality).where(
            ProductSeasonality.account_id == account_id,
            ProductSeasonality.product_id == product_id,
            ProductSeasonality.year == year,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = ProductSeasonality(account_id=account_id, product_id=product_id, year=year)
        db.add(record)
    for col, value in values.items():
        setattr(record, col, value)
    await db.commit()

    logger.info("allocation_config.seasonality_saved", product_id=str(product_id), year=year)
    return SeasonalityResponse(product_id=product_id, year=year, configured=True, **values)


# ─── Capacity ───────────────────────────────────────────────────────────────

@router.get("/capacity", response_model=CapacityResponse)
async def get_capacity(
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    result = await db.execute(select(AccountCapacityConfig).where(AccountCapacityConfig.account_id == account_id))
    config = result.scalar_one_or_none()
    if config is None:
        return CapacityResponse(
            max_events_per_panelist_week=get_settings().allocation_default_max_events_per_week,
            configured=False,
        )
    return CapacityResponse(max_events_per_panelist_week=config.max_events_per_panelist_week, configured=True)


@router.put("/capacity", response_model=CapacityResponse)
async def set_capacity(
    body: CapacityPayload,
    db: AsyncSession = Depends(get_tenant_db),
    account_id: UUID = Depends(get_account_id),
):
    result = await db.execute(select(AccountCapacityConfig).where(AccountCapacityConfig.account_id == account_id))
    config = result.scalar_one_or_none()
    if config is None:
        config = AccountCapacityConfig(account_id=account_id)
        db.add(config)
    config.max_events_per_panelist_week = body.max_events_per_panelist_week
    await db.commit()
    logger.info("allocation_config.capacity_saved", account_id=str(account_id), cap=body.max_events_per_panelist_week)
    return CapacityResponse(max_events_per_panelist_week=body.max_events_per_panelist_week, configured=True)
