"""
Seed Test Data — Creates a demo panel topology for development.

One account, one carrier serving one product, five cities over the three
classifications, two or three nodes per city, a classification matrix, a
seasonality curve for the current year and the weekly capacity.

Run: python scripts/seed_test_data.py
"""

import asyncio
import random
import uuid
from datetime import date

from core.config import get_settings
from db.models import (
    MONTH_COLUMNS,
    Account,
    AccountCapacityConfig,
    Carrier,
    CarrierProduct,
    City,
    ClassificationMatrixRow,
    Node,
    Panelist,
    Product,
    ProductSeasonality,
)
from db.session import Base, create_session_factory

settings = get_settings()

# Must match api/deps.py DEV_ACCOUNT_ID
ACCOUNT_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
CARRIER_ID = uuid.UUID("00000000-0000-0000-0000-000000000101")
PRODUCT_ID = uuid.UUID("00000000-0000-0000-0000-000000000201")

CITIES = [
    ("Madrid", "A", 3),
    ("Barcelona", "A", 3),
    ("Valencia", "B", 2),
    ("Sevilla", "B", 2),
    ("Zaragoza", "C", 2),
]
MATRIX = {
    "A": (50.0, 30.0, 20.0),
    "B": (40.0, 40.0, 20.0),
    "C": (40.0, 30.0, 30.0),
}
# Peaks in spring and before Christmas
SEASONALITY = (6.0, 7.0, 9.0, 9.0, 8.5, 8.0, 6.0, 5.0, 8.5, 9.0, 10.0, 14.0)


async def seed_data():
    """Create demo data for development."""
    engine, SessionLocal = create_session_factory(settings.database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        # ── Account / carrier / product ──────────────────────
        account = Account(account_id=ACCOUNT_ID, name="Iberia Postal Panel")
        db.add(account)
        await db.flush()

        db.add(Carrier(carrier_id=CARRIER_ID, account_id=ACCOUNT_ID, code="EXP", commercial_name="Express Post"))
        db.add(Product(product_id=PRODUCT_ID, account_id=ACCOUNT_ID, code="LTR-24", name="Letter 24h"))
        await db.flush()
        db.add(CarrierProduct(account_id=ACCOUNT_ID, carrier_id=CARRIER_ID, product_id=PRODUCT_ID))

        # ── Cities, panelists, nodes ─────────────────────────
        node_count = 0
        for name, classification, nodes in CITIES:
            city = City(account_id=ACCOUNT_ID, name=name, classification=classification)
            db.add(city)
            await db.flush()
            for i in range(nodes):
                panelist = Panelist(
                    account_id=ACCOUNT_ID,
                    name=f"{name} Panelist {i + 1}",
                    email=f"{name.lower()}{i + 1}@panel.example",
                    status=random.choice(["active", "active", "active", "vacation"]),
                )
                db.add(panelist)
                await db.flush()
                db.add(
                    Node(
                        account_id=ACCOUNT_ID,
                        code=f"{name[:3].upper()}-{i + 1:02d}",
                        city_id=city.city_id,
                        assigned_panelist_id=panelist.panelist_id,
                    )
                )
                node_count += 1

        # ── Allocation config ────────────────────────────────
        for classification, (pct_a, pct_b, pct_c) in MATRIX.items():
            db.add(
                ClassificationMatrixRow(
                    account_id=ACCOUNT_ID,
                    destination_classification=classification,
                    pct_from_a=pct_a,
                    pct_from_b=pct_b,
                    pct_from_c=pct_c,
                )
            )
        db.add(
            ProductSeasonality(
                account_id=ACCOUNT_ID,
                product_id=PRODUCT_ID,
                year=date.today().year,
                **dict(zip(MONTH_COLUMNS, SEASONALITY)),
            )
        )
        db.add(AccountCapacityConfig(account_id=ACCOUNT_ID, max_events_per_panelist_week=10))

        await db.commit()
        print(f"✅ Seeded: 1 account, {len(CITIES)} cities, {node_count} nodes, matrix + seasonality {date.today().year}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
