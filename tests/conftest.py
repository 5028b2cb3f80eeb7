"""Shared pytest fixtures."""
import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DB_URL", "sqlite://:memory:")

import pytest
from httpx import ASGITransport, AsyncClient
from tortoise import Tortoise

from felis.app.main import create_app
from felis.orm.db import tortoise_config
from felis.orm.store import SessionStore


@pytest.fixture
async def db():
    """Fresh in-memory database per test."""
    await Tortoise.init(config=tortoise_config("sqlite://:memory:", with_migrations=False))
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def store(db) -> SessionStore:
    return SessionStore(op_timeout=5.0, ping_timeout=1.0)


@pytest.fixture
def app(db):
    return create_app(manage_db=False)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def device() -> dict:
    return {
        "viewport": {"width": 1280, "height": 800},
        "screen": {"width": 1920, "height": 1080, "pixelRatio": 2.0},
    }


@pytest.fixture
def create_payload(device):
    def make(**overrides) -> dict:
        payload = {
            "setupInfo": "reaction-test-pilot",
            "locationInfo": {"latitude": 50.45, "longitude": 30.52, "error": None},
            "userAgent": "Mozilla/5.0 (X11; Linux x86_64)",
            "device": device,
            "clientStartTime": "2026-10-19T09:00:00+00:00",
        }
        payload.update(overrides)
        return payload
    return make
