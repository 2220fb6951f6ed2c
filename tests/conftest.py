"""
Shared test fixtures.

Uses an in-memory SQLite database for fast testing.
JSONB columns are compiled as JSON and UUID columns as CHAR(36) for
SQLite compatibility. The engine is configured so SAVEPOINTs work,
which the Committer relies on.
"""

import uuid
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from fleetsync.core.database import Base, enable_sqlite_savepoints, get_db
from fleetsync.main import app
from fleetsync.models import Aircraft, AircraftTypeMapping, Customer, ImportLogEntry, User  # noqa: F401
from fleetsync.services.committer import Committer
from fleetsync.services.type_normalizer import TypeNormalizer


# ─── SQLite compatibility: JSONB → JSON, UUID → CHAR(36) ──────

@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@compiles(UUID, "sqlite")
def compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(36)"


# Use SQLite async for tests (aiosqlite); one shared connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_savepoints(engine)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a test database session."""
    async with test_session() as session:
        yield session


@pytest_asyncio.fixture
async def normalizer() -> TypeNormalizer:
    return TypeNormalizer()


@pytest_asyncio.fixture
async def committer(normalizer: TypeNormalizer) -> Committer:
    return Committer(normalizer, fuzzy_threshold=0.82, operator_threshold=0.70)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    normalizer: TypeNormalizer,
    committer: Committer,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide a test HTTP client with database override and fresh caches."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.type_normalizer = normalizer
    app.state.committer = committer

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Helper factories ─────────────────────────────────────────

@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession):
    """Factory fixture for creating users."""
    async def _make(name: str = "Test Operator", email: str | None = None) -> User:
        user = User(name=name, email=email or f"user-{uuid.uuid4().hex[:8]}@example.com")
        db_session.add(user)
        await db_session.flush()
        await db_session.refresh(user)
        return user
    return _make


@pytest_asyncio.fixture
async def make_customer(db_session: AsyncSession):
    """Factory fixture for creating customers."""
    async def _make(
        name: str = "Atlas Air",
        source: str = "seed",
        color: str = "#3B82F6",
        is_active: bool = True,
        **fields,
    ) -> Customer:
        customer = Customer(
            name=name,
            source=source,
            color=color,
            color_text=fields.pop("color_text", "#ffffff"),
            is_active=is_active,
            **fields,
        )
        db_session.add(customer)
        await db_session.flush()
        await db_session.refresh(customer)
        return customer
    return _make


@pytest_asyncio.fixture
async def make_aircraft(db_session: AsyncSession):
    """Factory fixture for creating aircraft."""
    async def _make(
        registration: str = "N408MC",
        raw_type: str = "B747-400F",
        aircraft_type: str = "B747",
        operator: Customer | None = None,
        source: str = "seed",
        is_active: bool = True,
        **fields,
    ) -> Aircraft:
        aircraft = Aircraft(
            registration=registration,
            raw_type=raw_type,
            aircraft_type=aircraft_type,
            operator_raw=operator.name if operator else fields.pop("operator_raw", None),
            operator_id=operator.id if operator else None,
            source=source,
            is_active=is_active,
            **fields,
        )
        db_session.add(aircraft)
        await db_session.flush()
        await db_session.refresh(aircraft)
        return aircraft
    return _make


@pytest_asyncio.fixture
async def make_mapping(db_session: AsyncSession):
    """Factory fixture for creating aircraft type mappings."""
    async def _make(
        pattern: str,
        canonical_type: str,
        priority: int = 100,
        is_active: bool = True,
    ) -> AircraftTypeMapping:
        mapping = AircraftTypeMapping(
            pattern=pattern,
            canonical_type=canonical_type,
            priority=priority,
            is_active=is_active,
        )
        db_session.add(mapping)
        await db_session.flush()
        await db_session.refresh(mapping)
        return mapping
    return _make
