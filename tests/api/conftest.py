"""Fixtures for HTTP tests against an app backed by in-memory services."""

import pytest
from httpx import ASGITransport, AsyncClient

from src.container import build_services
from src.domains.turns.repository import InMemoryTurnRepository
from src.main import create_app
from src.shared.cache import InMemoryCache


@pytest.fixture
def services():
    return build_services(repository=InMemoryTurnRepository(), cache=InMemoryCache())


@pytest.fixture
def app(services):
    return create_app(services)


def client_for(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}
