"""Shared pytest fixtures."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
import yaml
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import smartbookmark.db.models  # noqa: F401 - register all models on Base
from smartbookmark.config import build_settings
from smartbookmark.db.base import Base
from smartbookmark.db.models.user import User
from smartbookmark.lib.change_feed import ChangeFeed


@pytest.fixture
def temp_app_yaml(tmp_path):
    """Create a temporary app.yaml file for testing."""
    config_path = tmp_path / "app.yaml"

    def _create_config(config: dict):
        with open(config_path, "w") as f:
            yaml.safe_dump(config, f)
        return config_path

    return _create_config


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookmarks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def make_user(session_maker):
    async def _make(email: str = "alice@example.com", name: str | None = "Alice") -> User:
        async with session_maker() as session:
            user = User(email=email, name=name)
            session.add(user)
            await session.commit()
            return user

    return _make


@pytest.fixture
def feed():
    """A fresh change feed, isolated from the process-wide one."""
    return ChangeFeed()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return build_settings(
        {
            "debug": True,
            "db": {"url": f"sqlite+aiosqlite:///{tmp_path / 'app.db'}"},
            "auth": {
                "redirect_base_url": "http://testserver.local",
                "providers": {
                    "dummy": {},
                    "github": {"client_id": "gh-id", "client_secret": "gh-secret"},
                },
            },
            "feed": {"keepalive_seconds": 0.1},
        },
        secret_key="test-secret-key",
    )


@pytest.fixture
def app(settings, feed):
    from smartbookmark.app_factory import create_app

    return create_app(settings, feed=feed)


@pytest.fixture
def client(app):
    from litestar.testing import TestClient

    with TestClient(app) as client:
        yield client


@pytest.fixture
def login(client):
    """Sign in through the development provider."""

    def _login(email: str = "alice@example.com", name: str = "", next_url: str | None = None):
        if next_url:
            client.get("/auth/dummy/login", params={"next": next_url}, follow_redirects=False)
        return client.post(
            "/auth/dummy-login", data={"email": email, "name": name}, follow_redirects=False
        )

    return _login
