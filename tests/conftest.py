"""
Shared fixtures: a fresh in-memory database per test with a small catalog.

Catalog:
    X         Widget X            cost 5.00   stock 10
    Y         Yoghurt Y           cost 1.50   stock 100
    A         Alpha               cost 2.00   stock 0
    B         Beta                cost 10.00  stock 0
    NEW       New Arrival         cost 2.00   stock 0
    P1        Parent Tee          (no cost / stock, has a variation)
    P1-RED-M  variation of P1     cost 7.00   stock 4
"""
import os
import tempfile

# Keep log files out of the working tree
os.environ.setdefault("BACKOFFICE_DATA_ROOT", tempfile.mkdtemp(prefix="backoffice-test-"))

from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from backoffice_hub.database import build_engine, build_session_factory, create_schema, get_session
from backoffice_hub.db_models import Product, ProductVariation

PARENT_TEE_ID = 6
RED_M_VARIATION_ID = 10


async def seed_catalog(session) -> None:
    session.add_all([
        Product(id=1, sku="X", name="Widget X", cost_price=Decimal("5.00"), stock_quantity=10),
        Product(id=2, sku="Y", name="Yoghurt Y", cost_price=Decimal("1.50"), stock_quantity=100),
        Product(id=3, sku="A", name="Alpha", cost_price=Decimal("2.00"), stock_quantity=0),
        Product(id=4, sku="B", name="Beta", cost_price=Decimal("10.00"), stock_quantity=0),
        Product(id=5, sku="NEW", name="New Arrival", cost_price=Decimal("2.00"), stock_quantity=0),
        Product(id=PARENT_TEE_ID, sku="P1", name="Parent Tee"),
    ])
    await session.flush()
    session.add(ProductVariation(
        id=RED_M_VARIATION_ID,
        parent_id=PARENT_TEE_ID,
        sku="P1-RED-M",
        attributes=["Red", "M"],
        cost_price=Decimal("7.00"),
        stock_quantity=4,
    ))
    await session.flush()


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite://")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = build_session_factory(engine)
    async with factory() as session:
        await seed_catalog(session)
        await session.commit()
    yield factory


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_factory):
    from backoffice_hub.main import app

    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
