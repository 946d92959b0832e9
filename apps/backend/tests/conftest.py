import pytest
import sys
import os
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import create_async_engine

# Tests never touch a real database; set before anything imports database.py
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")
for _name in ("SSACTIVEWEAR_ACCOUNT_NUMBER", "SSACTIVEWEAR_API_KEY", "CANONICAL_MAPPING_PATH", "SENTRY_DSN"):
    os.environ.pop(_name, None)

# Add parent directory to path to allow importing models and main
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import models  # noqa: E402,F401
from catalog.cache import TTLCache  # noqa: E402
from catalog.config import CatalogSettings, SsActivewearConfig  # noqa: E402
from catalog.mappings import CanonicalMappingTable  # noqa: E402
from catalog.suppliers import SsActivewearClient  # noqa: E402
from main import app, get_session  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest_asyncio.fixture(name="session", scope="function")
async def session_fixture():
    # Fresh in-memory database per test
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async_session = sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session() as session:
        yield session

    await test_engine.dispose()


@pytest.fixture(name="cache")
def cache_fixture():
    cache = TTLCache()
    yield cache
    cache.close()


@pytest.fixture(name="remote_config")
def remote_config_fixture():
    return SsActivewearConfig(
        account_number="123456",
        api_key="test-key",
        rest_base_url="https://api.test/V2",
        promostandards_product_url="https://promostandards.test/productdata",
        timeout_seconds=5,
        max_attempts=3,
    )


@pytest.fixture(name="settings")
def settings_fixture(remote_config):
    return CatalogSettings(
        product_cache_ttl_seconds=300,
        search_cache_ttl_seconds=60,
        ssactivewear=remote_config,
    )


@pytest.fixture(name="remote_client")
def remote_client_fixture(remote_config, cache):
    return SsActivewearClient(remote_config, cache=cache, cache_ttl_seconds=300, retry_backoff_seconds=0)


@pytest.fixture(name="seed_product")
def seed_product_fixture(session: AsyncSession):
    """Insert an ingested product with optional piece price and inventory rows.

    inventory: list of (color, size, total_qty, [(warehouse_id, qty), ...])
    """
    from models import Product, ProductColor, ProductInventory, ProductSize

    async def seed(part_id, name="Tee", brand=None, price=None, inventory=(), colors=(), sizes=()):
        product = Product(
            supplier_part_id=part_id,
            name=name,
            brand=brand,
            attributes={"piecePrice": price} if price is not None else None,
            description=["Soft cotton", "Tear-away label"],
        )
        session.add(product)
        await session.flush()
        for code, color_name in colors:
            session.add(ProductColor(product_id=product.id, color_code=code, color_name=color_name))
        for index, code in enumerate(sizes):
            session.add(ProductSize(product_id=product.id, size_code=code, display=code, sort=index))
        for color, size, total, stocks in inventory:
            session.add(
                ProductInventory(
                    supplier_part_id=part_id,
                    color_code=color,
                    size_code=size,
                    total_qty=total,
                    warehouses=[{"warehouseId": wid, "quantity": qty} for wid, qty in stocks],
                )
            )
        await session.commit()
        return product

    return seed


@pytest_asyncio.fixture(name="client")
async def client_fixture(session: AsyncSession, cache, settings, remote_client):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.state.catalog_cache = cache
    app.state.catalog_settings = settings
    app.state.ssactivewear_client = remote_client
    app.state.canonical_mappings = CanonicalMappingTable.empty()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    for name in ("catalog_cache", "catalog_settings", "ssactivewear_client", "canonical_mappings"):
        setattr(app.state, name, None)
