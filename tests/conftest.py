from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from goldventory.api import create_app
from goldventory.config import Settings
from goldventory.core import InventoryCore
from goldventory.database import Base
from goldventory.notifications import ChangeFeed


@pytest.fixture()
def settings(tmp_path) -> Settings:
    db_path = tmp_path / "test.db"
    return Settings(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        environment="test",
        app_name="Test Goldventory Service",
    )


@pytest.fixture()
async def session_factory(settings: Settings) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(settings.database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture()
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture()
async def core(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings, feed: ChangeFeed
) -> InventoryCore:
    inventory_core = InventoryCore(session_factory, settings, feed)
    await inventory_core.ensure_loaded()
    return inventory_core


@pytest.fixture()
def app(settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    return create_app(settings, session_factory=session_factory)


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
