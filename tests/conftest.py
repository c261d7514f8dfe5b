import sys
import os
import pathlib
import tempfile
import uuid
import warnings
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Ensure a secure SECRET_KEY is available during tests so the app lifespan
# check in `todo_app.main` doesn't raise.
os.environ.setdefault('SECRET_KEY', 'test-secret-key-for-unit-tests')
# Point the engine at a throwaway database before todo_app.db is imported;
# it reads DATABASE_URL at import time.
_TEST_DB_DIR = tempfile.mkdtemp(prefix='todo_app_tests_')
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ.setdefault('DEFAULT_TIMEZONE', 'Asia/Singapore')

try:
    from sqlalchemy.exc import SAWarning
    warnings.filterwarnings('ignore', category=SAWarning)
except ImportError:
    pass

import logging as _logging
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool', 'sqlmodel'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

# ensure project root is on PYTHONPATH for test runs
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from todo_app.main import app
from todo_app.db import init_db, async_session
from todo_app.models import User
from todo_app.auth import pwd_context


async def create_user(username: str, password: str) -> User:
    async with async_session() as sess:
        u = User(username=username, password_hash=pwd_context.hash(password))
        sess.add(u)
        await sess.commit()
        await sess.refresh(u)
        return u


async def authenticate(ac: AsyncClient, username: str, password: str) -> AsyncClient:
    """Attach a bearer token for username to the client."""
    resp = await ac.post("/auth/token", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    ac.headers.update({"Authorization": f"Bearer {resp.json()['access_token']}"})
    return ac


@pytest_asyncio.fixture
async def ensure_db():
    await init_db()


@pytest_asyncio.fixture
async def user(ensure_db):
    # a fresh user per test keeps each test's todos, tags and templates apart
    return await create_user(f"user-{uuid.uuid4().hex[:10]}", "testpass")


@pytest_asyncio.fixture
async def client(user):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield await authenticate(ac, user.username, "testpass")


@pytest_asyncio.fixture
async def other_client(ensure_db):
    """A second, unrelated user."""
    other = await create_user(f"other-{uuid.uuid4().hex[:10]}", "otherpass")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield await authenticate(ac, other.username, "otherpass")


@pytest_asyncio.fixture
async def anon_client(ensure_db):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def pytest_sessionfinish(session, exitstatus):
    """Dispose the async engine so pooled connections close before shutdown."""
    import asyncio
    from todo_app import db as app_db
    asyncio.run(app_db.engine.dispose())
