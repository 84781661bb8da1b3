"""Shared pytest fixtures for store, service and API tests.

Tests run against a file-backed SQLite database per test so that concurrent
sessions really contend on one database, like they do on PostgreSQL.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tinylink.allocator import CodeAllocator
from tinylink.config import Settings
from tinylink.dependencies import ServiceManager, get_service_manager
from tinylink.main import app
from tinylink.service import LinkService
from tinylink.store import LinkStore


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        APP_ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'tinylink.db'}",
        CACHE_ENABLED=False,
        STORAGE_TIMEOUT_SECONDS=10.0,
    )


@pytest_asyncio.fixture
async def services(settings: Settings) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager(settings)
    await manager.initialize()
    yield manager
    await manager.cleanup()


@pytest.fixture
def store(services: ServiceManager) -> LinkStore:
    return LinkStore(services.session_factory, timeout_seconds=services.settings.STORAGE_TIMEOUT_SECONDS)


@pytest.fixture
def allocator(store: LinkStore) -> CodeAllocator:
    return CodeAllocator(store)


@pytest.fixture
def link_service(store: LinkStore, allocator: CodeAllocator) -> LinkService:
    return LinkService(store, allocator)


@pytest_asyncio.fixture
async def client(services: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_service_manager] = lambda: services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
