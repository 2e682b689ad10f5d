"""Shared test fixtures for backend tests."""

import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOCAL_STORAGE_PATH", "")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from eduadmin.api.deps import get_db  # noqa: E402
from eduadmin.config import Settings  # noqa: E402
from eduadmin.database import Base  # noqa: E402
from eduadmin.main import app  # noqa: E402
from eduadmin.state import AppState, build_state  # noqa: E402

import eduadmin.models  # noqa: E402,F401

ADMIN_TOKEN = "test-admin-token"
OWNER_EMAIL = "owner@eduadmin.org"
LIMITED_EMAIL = "frontdesk@eduadmin.org"
PASSWORD = "secret-pass"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        admin_api_token=ADMIN_TOKEN,
        local_storage_path="",
        rate_limit_enabled=False,
        environment="test",
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """A fresh SQLite file per test, tables created up front."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


def _override_db(factory: async_sessionmaker):
    """Dependency override for get_db, same commit/rollback contract."""
    async def _get_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    return _get_db


@pytest_asyncio.fixture
async def state(test_settings, session_factory) -> AsyncGenerator[AppState, None]:
    """
    Isolated RBAC state installed on the app.

    The remote role store is this same app, reached in-process through
    ASGITransport, so saves and reads go through the real endpoints.
    """
    remote_client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test/api")
    test_state = build_state(test_settings, http_client=remote_client)

    previous = app.state.rbac
    app.state.rbac = test_state
    app.dependency_overrides[get_db] = _override_db(session_factory)
    yield test_state
    app.dependency_overrides.clear()
    app.state.rbac = previous
    await test_state.aclose()


@pytest_asyncio.fixture
async def anon_client(state) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with no session."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def login(client: AsyncClient, email: str, password: str = PASSWORD) -> dict:
    resp = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest_asyncio.fixture
async def owner_client(state) -> AsyncGenerator[AsyncClient, None]:
    """Signed in as the bootstrap owner account."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await login(client, OWNER_EMAIL)
        yield client


@pytest_asyncio.fixture
async def limited_client(state) -> AsyncGenerator[AsyncClient, None]:
    """Signed in as the bootstrap front desk account (role-frontdesk)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await login(client, LIMITED_EMAIL)
        yield client


def session_of(state: AppState, client: AsyncClient):
    """The server-side AuthSession behind a client's cookie."""
    return state.sessions.get(client.cookies.get(state.settings.session_cookie_name))
