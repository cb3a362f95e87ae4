"""Test fixtures — fresh database, fresh app, and an in-process Redis.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own engine with the schema created from the models
   (in-memory SQLite by default; set STOREFRONT_TEST_DATABASE_URL to run
   against Postgres)
2. Each test gets its own app from create_app(), so the connection
   registry starts empty
3. Redis is replaced by FakeRedis only in tests that ask for it; the rest
   run with Redis "down", which is a supported mode
"""

import os
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront import cache
from storefront.db.engine import get_db
from storefront.db.models import (
    Base,
    Category,
    Collection,
    Discount,
    Product,
    ProductImage,
    ProductSize,
)
from storefront.main import create_app


TEST_DB_URL = os.environ.get("STOREFRONT_TEST_DATABASE_URL", "sqlite+aiosqlite://")


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the app: strings with expiry.

    Set `fail = True` to make every command raise a connection error.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, float] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    def expire_now(self, key: str) -> None:
        """Simulate the TTL running out."""
        self.expiry[key] = time.monotonic() - 1

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        if not self._alive(key):
            return None
        value = self.data[key]
        # Same as a decode_responses=True client: bytes come back as str
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
            self.expiry[key] = time.monotonic() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def incr(self, key):
        self._check()
        value = int(self.data[key]) + 1 if self._alive(key) else 1
        self.data[key] = str(value)
        return value

    async def expire(self, key, seconds):
        self._check()
        if not self._alive(key):
            return False
        self.ttls[key] = seconds
        self.expiry[key] = time.monotonic() + seconds
        return True

    async def aclose(self):
        pass


@pytest.fixture()
def fake_redis(monkeypatch):
    """Install FakeRedis as the app's Redis pool."""
    fake = FakeRedis()
    monkeypatch.setattr(cache, "_redis", fake)
    return fake


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session on a freshly created schema."""
    engine_kwargs = {"echo": False}
    if TEST_DB_URL.startswith("sqlite"):
        engine_kwargs["poolclass"] = StaticPool
    engine = create_async_engine(TEST_DB_URL, **engine_kwargs)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest.fixture()
def app():
    return create_app()


@pytest_asyncio.fixture()
async def client(app, db_session):
    """HTTP client with the app's get_db overridden to the test session."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Catalog data ──────────────────────────────────────────


async def add_product(
    db: AsyncSession,
    name: str,
    price: str,
    *,
    slug: str | None = None,
    category: Category | None = None,
    collection: Collection | None = None,
    in_stock: bool = True,
    is_archived: bool = False,
    created_at: datetime | None = None,
    images: list[tuple[str, int]] | None = None,
    sizes: list[tuple[str, str]] | None = None,
    discount: tuple[str, bool] | None = None,
) -> Product:
    product = Product(
        name=name,
        slug=slug or name.lower().replace(" ", "-"),
        description=f"{name} description",
        price=Decimal(price),
        in_stock=in_stock,
        is_archived=is_archived,
        category=category,
        collection=collection,
        created_at=created_at or datetime.now(timezone.utc),
        images=[ProductImage(url=u, position=pos) for u, pos in (images or [])],
        sizes=[ProductSize(size=s, price=Decimal(p)) for s, p in (sizes or [])],
    )
    if discount:
        product.discount = Discount(percentage=Decimal(discount[0]), enabled=discount[1])
    db.add(product)
    await db.flush()
    return product


@pytest_asyncio.fixture()
async def catalog(db_session):
    """A small catalog: two categories, one collection, five products.

    Creation times are one day apart, oldest first, so "newest" order is
    the reverse of insertion.
    """
    shoes = Category(name="Shoes", slug="shoes")
    shirts = Category(name="Shirts", slug="shirts")
    summer = Collection(name="Summer Drop", slug="summer")
    db_session.add_all([shoes, shirts, summer])
    await db_session.flush()

    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    day = timedelta(days=1)
    products = {
        "runner": await add_product(
            db_session, "Air Runner", "120.00", category=shoes, collection=summer,
            created_at=start, images=[("/img/runner-side.jpg", 1), ("/img/runner-front.jpg", 0)],
            sizes=[("42", "125.00"), ("40", "120.00"), ("44", "130.00")],
        ),
        "boot": await add_product(
            db_session, "Trail Boot", "180.00", category=shoes,
            created_at=start + day, in_stock=False,
        ),
        "tee": await add_product(
            db_session, "Basic Tee", "25.00", category=shirts, collection=summer,
            created_at=start + 2 * day, discount=("10", True),
            images=[("/img/tee.jpg", 0)],
        ),
        "oxford": await add_product(
            db_session, "Oxford Shirt", "60.00", category=shirts,
            created_at=start + 3 * day,
        ),
        "old": await add_product(
            db_session, "Archived Sandal", "40.00", category=shoes,
            created_at=start + 4 * day, is_archived=True,
        ),
    }
    await db_session.commit()
    # Routes must load rows (and their ordered collections) from the database
    db_session.expunge_all()
    return {
        "shoes": shoes,
        "shirts": shirts,
        "summer": summer,
        **products,
    }


@pytest.fixture()
def make_product(db_session):
    """Factory: `await make_product("Name", "9.99", in_stock=False)`."""

    async def _make(name: str, price: str, **kwargs) -> Product:
        product = await add_product(db_session, name, price, **kwargs)
        await db_session.commit()
        db_session.expunge_all()
        return product

    return _make
