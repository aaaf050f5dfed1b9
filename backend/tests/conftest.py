"""
Test Configuration — Fixtures for async DB, test client, and a seeded panel.

Each test gets its own SQLite file under tmp_path, so merges can open
independent sessions (and transactions) against the same database.
"""

import uuid
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_current_user, get_db, get_session_factory, get_tenant_db
from api.main import app
from db.session import Base

ACCOUNT_ID = "00000000-0000-0000-0000-000000000001"

# 10% for January-October, nothing in November/December.
TEN_PERCENT_CURVE = tuple([10.0] * 10 + [0.0, 0.0])


@pytest.fixture
async def test_engine(tmp_path):
    """Create a per-test SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'panelops.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": "auth0|test-user-id",
        "email": "planner@panelops.test",
        "account_id": ACCOUNT_ID,
    }


@pytest.fixture
async def client(session_factory, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    def override_get_current_user():
        return mock_user

    async def override_get_tenant_db():
        """Skip set_config (SQLite doesn't support it), return a plain session."""
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_tenant_db] = override_get_tenant_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def seed_panel(
    db: AsyncSession,
    *,
    capacity: int = 50,
    with_requirements: bool = True,
    seasonality_year: int | None = 2026,
) -> SimpleNamespace:
    """
    Two cities with one eligible node each:
      Alpha (A) receives 60% of the volume, sourced from Beta
      Beta  (B) receives 40% of the volume, sourced from Alpha
    plus one inactive node and one node without a panelist in Alpha.
    """
    from db.models import (
        MONTH_COLUMNS,
        Account,
        AccountCapacityConfig,
        Carrier,
        CarrierProduct,
        City,
        CityAllocationRequirement,
        ClassificationMatrixRow,
        Node,
        Panelist,
        Product,
        ProductSeasonality,
    )

    account_id = uuid.UUID(ACCOUNT_ID)
    carrier_id = uuid.uuid4()
    product_id = uuid.uuid4()

    db.add(Account(account_id=account_id, name="Test Panel"))
    await db.flush()
    db.add(Carrier(carrier_id=carrier_id, account_id=account_id, code="EXP", commercial_name="Express"))
    db.add(Product(product_id=product_id, account_id=account_id, code="LTR", name="Letter"))
    await db.flush()
    db.add(CarrierProduct(account_id=account_id, carrier_id=carrier_id, product_id=product_id))

    alpha = City(account_id=account_id, name="Alpha", classification="A")
    beta = City(account_id=account_id, name="Beta", classification="B")
    db.add_all([alpha, beta])
    await db.flush()

    panelists = [Panelist(account_id=account_id, name=f"Panelist {i}") for i in range(3)]
    db.add_all(panelists)
    await db.flush()

    db.add_all(
        [
            Node(account_id=account_id, code="ALP-01", city_id=alpha.city_id, assigned_panelist_id=panelists[0].panelist_id),
            Node(account_id=account_id, code="BET-01", city_id=beta.city_id, assigned_panelist_id=panelists[1].panelist_id),
            Node(
                account_id=account_id,
                code="ALP-02",
                city_id=alpha.city_id,
                assigned_panelist_id=panelists[2].panelist_id,
                status="inactive",
            ),
            Node(account_id=account_id, code="ALP-03", city_id=alpha.city_id, assigned_panelist_id=None),
        ]
    )

    db.add_all(
        [
            ClassificationMatrixRow(
                account_id=account_id, destination_classification="A", pct_from_a=0, pct_from_b=100, pct_from_c=0
            ),
            ClassificationMatrixRow(
                account_id=account_id, destination_classification="B", pct_from_a=100, pct_from_b=0, pct_from_c=0
            ),
        ]
    )
    if with_requirements:
        db.add_all(
            [
                CityAllocationRequirement(account_id=account_id, city_id=alpha.city_id, from_classification_b=60),
                CityAllocationRequirement(account_id=account_id, city_id=beta.city_id, from_classification_a=40),
            ]
        )
    if seasonality_year is not None:
        db.add(
            ProductSeasonality(
                account_id=account_id,
                product_id=product_id,
                year=seasonality_year,
                **dict(zip(MONTH_COLUMNS, TEN_PERCENT_CURVE)),
            )
        )
    db.add(AccountCapacityConfig(account_id=account_id, max_events_per_panelist_week=capacity))
    await db.commit()

    return SimpleNamespace(
        account_id=account_id,
        carrier_id=carrier_id,
        product_id=product_id,
        alpha_id=alpha.city_id,
        beta_id=beta.city_id,
    )


@pytest.fixture
async def panel(test_db):
    """Seeded panel with a weekly cap of 50."""
    return await seed_panel(test_db)


@pytest.fixture
def make_panel(test_db):
    """Seed a panel with custom capacity/requirements/seasonality."""

    async def _make(**kwargs) -> SimpleNamespace:
        return await seed_panel(test_db, **kwargs)

    return _make
