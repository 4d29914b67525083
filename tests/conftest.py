"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from famquest.db import models  # noqa: F401
from famquest.db.base import Base
from famquest.dependencies import get_store
from famquest.gamification.entities import ChildProfile, FamilySettings
from famquest.gamification.locks import child_locks
from famquest.gamification.seed import default_catalog
from famquest.main import create_app
from famquest.store.memory import InMemoryStore
from famquest.store.sql import SqlStore

FAMILY_ID = "fam-1"
CHILD_IDS = ("child-a", "child-b", "child-c")
NOW = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)  # Wednesday


@pytest.fixture(autouse=True)
def _fresh_child_locks():
    child_locks.clear()
    yield
    child_locks.clear()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryStore:
    """One UTC family with three children (created a day apart) and the default catalog."""
    mem = InMemoryStore()
    mem.add_family(FamilySettings(family_id=FAMILY_ID))
    for offset, child_id in enumerate(CHILD_IDS):
        mem.add_child(ChildProfile(
            child_id=child_id,
            family_id=FAMILY_ID,
            display_name=child_id.replace("-", " ").title(),
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(days=offset),
        ))
    for definition in default_catalog():
        mem.add_achievement(definition)
    return mem


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_store(session_factory) -> SqlStore:
    return SqlStore(session_factory)


@pytest_asyncio.fixture
async def client(store: InMemoryStore) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the in-memory store injected."""
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
