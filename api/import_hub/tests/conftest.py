"""Shared fixtures: in-memory SQLite database, sessions and an HTTP client."""
import os
import tempfile
from decimal import Decimal

os.environ.setdefault("IMPORT_HUB_DATA_ROOT", tempfile.mkdtemp(prefix="import-hub-test-"))
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from import_hub import database
from import_hub.database import create_tables, make_session_factory
from import_hub.db_models import Product, Supplier
from import_hub.models import ShipmentCreate


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def product_factory(db):
    """Create products on demand with an opening balance."""

    async def create_product(name="Bike frame", stock=0, avg_local="0", avg_foreign="0", **kwargs):
        product = Product(
            name=name,
            stock_quantity=stock,
            average_cost_local=Decimal(avg_local),
            average_cost_foreign=Decimal(avg_foreign),
            **kwargs,
        )
        db.add(product)
        await db.flush()
        return product

    return create_product


@pytest.fixture
async def supplier(db):
    supplier = Supplier(name="Paul Lange", country="DE")
    db.add(supplier)
    await db.flush()
    return supplier


@pytest.fixture
def shipment_payload():
    """Two-line invoice: 80 + 20 USD, 20 USD freight, rate 5, 60% import tax, 18% ICMS."""

    def build(product_a=None, product_b=None, **overrides):
        payload = {
            "invoice_number": "INV-2024-001",
            "exchange_rate": "5",
            "subtotal_foreign": "100",
            "freight_foreign": "20",
            "import_tax_rate": "60",
            "icms_rate": "18",
            "items": [
                {"product_id": product_a, "product_name": "Item A", "quantity": 1, "unit_price_foreign": "80"},
                {"product_id": product_b, "product_name": "Item B", "quantity": 1, "unit_price_foreign": "20"},
            ],
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def shipment_data(shipment_payload):
    def build(product_a=None, product_b=None, **overrides):
        return ShipmentCreate.model_validate(shipment_payload(product_a, product_b, **overrides))

    return build


@pytest.fixture
async def client(engine, session_factory, monkeypatch):
    from import_hub.main import app

    monkeypatch.setattr(database, "_engine", engine)
    monkeypatch.setattr(database, "_async_session_factory", session_factory)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
