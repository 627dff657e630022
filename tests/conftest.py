"""Shared pytest fixtures."""
import os
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path

# Must be set before the application modules read their configuration
_db_dir = tempfile.mkdtemp(prefix="policy-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_db_dir) / 'test.sqlite'}"
os.environ["JWT_SECRET"] = "test-secret"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from asgi_lifespan import LifespanManager  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.database.base import Base  # noqa: E402
from app.core.database.engine import AsyncSessionLocal, engine  # noqa: E402
from app.features.users.models import User  # noqa: E402
from app.main import app  # noqa: E402
from scripts.seed_permissions import seed_all  # noqa: E402
from tests.utils import FakeClock, create_user  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture()
async def client() -> AsyncIterator[AsyncClient]:
    """HTTPX client bound to a started application over a freshly seeded database."""
    async with LifespanManager(app):
        # Seed without the background refresh racing the writes
        await app.state.settings_cache.stop()
        async with AsyncSessionLocal() as session:
            await seed_all(session)
        app.state.permission_cache.invalidate_all()
        await app.state.settings_cache.refresh()

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
            yield async_client

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture()
async def db(client: AsyncClient) -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture()
async def super_admin(db: AsyncSession) -> User:
    return await create_user(db, "root@example.com", ["super_admin"])


@pytest_asyncio.fixture()
async def admin(db: AsyncSession) -> User:
    return await create_user(db, "admin@example.com", ["admin"])


@pytest_asyncio.fixture()
async def moderator(db: AsyncSession) -> User:
    return await create_user(db, "mod@example.com", ["moderator"])
