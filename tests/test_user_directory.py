"""
Tests for user directory backends.
HTTP lookups run against a mocked aiohttp session.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from aiohttp import ClientConnectionError, ClientResponseError

from callhub.config import Settings
from callhub.database import build_async_engine, build_session_factory, create_tables
from callhub.services.user_directory import (
    HttpUserDirectory,
    InMemoryUserDirectory,
    SqlUserDirectory,
    UserRecord,
)


class FakeResponse:
    """Minimal stand-in for an aiohttp response context manager."""

    def __init__(self, status: int, data=None):
        self.status = status
        self._data = data

    async def json(self):
        return self._data

    def raise_for_status(self):
        if self.status >= 400:
            raise ClientResponseError(request_info=MagicMock(), history=(), status=self.status)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


@pytest.fixture
def http_directory():
    directory = HttpUserDirectory("https://users.example.com/api/", cache_ttl=60)
    directory.session = MagicMock()
    directory.session.close = AsyncMock()
    return directory


# ===========================
# In-memory
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_in_memory_lookup(users):
    alice = await users.lookup("alice")

    assert alice.name == "Alice Agent"
    assert await users.exists("bob") is True
    assert await users.lookup("mallory") is None
    assert await users.exists("mallory") is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_in_memory_add():
    directory = InMemoryUserDirectory()
    directory.add(UserRecord(id="erin", name="Erin"))

    assert (await directory.lookup("erin")).name == "Erin"


# ===========================
# SQL
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_sql_upsert_and_lookup():
    engine = build_async_engine(Settings(database_url="sqlite:///:memory:"))
    await create_tables(engine)
    directory = SqlUserDirectory(build_session_factory(engine))

    try:
        await directory.upsert(UserRecord(id="42", name="Dana", email="dana@example.com"))
        await directory.upsert(UserRecord(id="42", name="Dana Smith", email="dana@example.com"))

        user = await directory.lookup("42")
        assert user.name == "Dana Smith"
        assert user.email == "dana@example.com"
        assert await directory.lookup("43") is None
    finally:
        await engine.dispose()


# ===========================
# HTTP
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_lookup(http_directory):
    http_directory.session.get = MagicMock(return_value=FakeResponse(200, {
        "id": 42, "name": "Dana", "avatar": "https://cdn.example.com/42.png", "department": "sales"
    }))

    user = await http_directory.lookup("42")

    assert user.id == "42"
    assert user.name == "Dana"
    assert user.avatar == "https://cdn.example.com/42.png"
    http_directory.session.get.assert_called_once_with("https://users.example.com/api/users/42")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_lookup_unwraps_envelope(http_directory):
    http_directory.session.get = MagicMock(return_value=FakeResponse(200, {
        "success": True, "user": {"id": "42", "name": "Dana"}
    }))

    assert (await http_directory.lookup("42")).name == "Dana"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_lookup_not_found_is_cached(http_directory):
    http_directory.session.get = MagicMock(return_value=FakeResponse(404))

    assert await http_directory.lookup("missing") is None
    assert await http_directory.exists("missing") is False
    assert http_directory.session.get.call_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_lookup_caches_hits(http_directory):
    http_directory.session.get = MagicMock(return_value=FakeResponse(200, {"id": "42", "name": "Dana"}))

    await http_directory.lookup("42")
    await http_directory.lookup("42")

    assert http_directory.session.get.call_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_lookup_retries_connection_errors(http_directory):
    http_directory.session.get = MagicMock(side_effect=[
        ClientConnectionError("connection reset"),
        FakeResponse(200, {"id": "42", "name": "Dana"}),
    ])

    user = await http_directory.lookup("42")

    assert user.name == "Dana"
    assert http_directory.session.get.call_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_lookup_server_error_propagates(http_directory):
    http_directory.session.get = MagicMock(return_value=FakeResponse(500))

    with pytest.raises(ClientResponseError):
        await http_directory.lookup("42")

    # Failures are not cached
    assert "42" not in http_directory.cache


@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_cleanup_closes_session(http_directory):
    session = http_directory.session

    await http_directory.cleanup()

    session.close.assert_awaited_once()
    assert http_directory.session is None
