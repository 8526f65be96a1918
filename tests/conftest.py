"""
Pytest configuration and shared fixtures for testing.
Provides settings overrides, recording sinks, stores and a wired coordinator.
"""
import pytest
import os
from datetime import datetime, timedelta
from typing import List, Tuple

from pydantic import BaseModel

# Set testing environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "testing"
os.environ["DEBUG"] = "true"
os.environ["ENABLE_TELEMETRY"] = "false"
os.environ["DISTRIBUTED_LOCK_ENABLED"] = "false"

from callhub.config import Settings
from callhub.calls import (
    CallCoordinator,
    CallEventDispatcher,
    EventSink,
    PresenceRegistry,
    SignalingRelay,
)
from callhub.services.auth_service import AuthService
from callhub.services.user_directory import InMemoryUserDirectory, UserRecord
from callhub.session import InMemoryCallSessionStore
from callhub.utils.telemetry import MetricsCollector

TEST_SECRET = "test-secret-key"


# ===========================
# Settings Fixtures
# ===========================

@pytest.fixture
def test_settings() -> Settings:
    """Settings for an isolated, in-memory application."""
    return Settings(
        environment="testing",
        debug=True,
        database_url="sqlite:///:memory:",
        redis_url=None,
        distributed_lock_enabled=False,
        enable_telemetry=False,
        secret_key=TEST_SECRET,
        call_ring_timeout_seconds=60.0
    )


@pytest.fixture
def auth_service() -> AuthService:
    return AuthService(secret_key=TEST_SECRET)


# ===========================
# Fakes
# ===========================

class RecordingSink(EventSink):
    """EventSink that records every delivery instead of writing to a socket."""

    def __init__(self):
        self.sent: List[Tuple[str, BaseModel]] = []
        self.closed: set = set()

    async def send(self, handle: str, event: BaseModel) -> bool:
        if handle in self.closed:
            return False
        self.sent.append((handle, event))
        return True

    def to(self, handle: str) -> List[BaseModel]:
        return [event for h, event in self.sent if h == handle]

    def types_to(self, handle: str) -> List[str]:
        return [event.type for event in self.to(handle)]

    def last(self, handle: str) -> BaseModel:
        events = self.to(handle)
        assert events, f"nothing sent to {handle}"
        return events[-1]

    def clear(self) -> None:
        self.sent.clear()


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 30, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


# ===========================
# Store Fixtures
# ===========================

@pytest.fixture
def in_memory_store(clock) -> InMemoryCallSessionStore:
    return InMemoryCallSessionStore(clock=clock)


@pytest.fixture
def users() -> InMemoryUserDirectory:
    return InMemoryUserDirectory([
        UserRecord(id="alice", name="Alice Agent", avatar="https://cdn.example.com/alice.png"),
        UserRecord(id="bob", name="Bob Buyer"),
        UserRecord(id="carol", name="Carol Client"),
    ])


# ===========================
# Call Service Fixtures
# ===========================

@pytest.fixture
def presence() -> PresenceRegistry:
    registry = PresenceRegistry()
    registry.register("alice", "h-alice")
    registry.register("bob", "h-bob")
    return registry


@pytest.fixture
def relay(sink) -> SignalingRelay:
    return SignalingRelay(sink)


@pytest.fixture
async def coordinator(in_memory_store, presence, relay, sink, users, clock, metrics):
    """Coordinator with a long ring timeout; tests drive expiry explicitly."""
    coordinator = CallCoordinator(
        store=in_memory_store,
        presence=presence,
        relay=relay,
        sink=sink,
        users=users,
        ring_timeout_seconds=60.0,
        clock=clock,
        metrics=metrics
    )
    yield coordinator
    await coordinator.shutdown()


@pytest.fixture
def make_coordinator(in_memory_store, presence, relay, sink, users, clock, metrics):
    """Factory for coordinators with non-default options."""
    built: List[CallCoordinator] = []

    def _make(**overrides) -> CallCoordinator:
        options = dict(
            store=in_memory_store,
            presence=presence,
            relay=relay,
            sink=sink,
            users=users,
            clock=clock,
            metrics=metrics
        )
        options.update(overrides)
        coordinator = CallCoordinator(**options)
        built.append(coordinator)
        return coordinator

    yield _make

    for coordinator in built:
        for task in list(coordinator._timers.values()):
            task.cancel()


@pytest.fixture
def dispatcher(coordinator, relay, sink, metrics) -> CallEventDispatcher:
    return CallEventDispatcher(coordinator, relay, sink, metrics=metrics)


# ===========================
# Application Fixtures
# ===========================

@pytest.fixture
def app(test_settings, users):
    """Application wired to in-memory collaborators."""
    from callhub.main import create_app

    return create_app(
        test_settings,
        store=InMemoryCallSessionStore(),
        users=users
    )


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def token_for(auth_service):
    def _token(identity: str) -> str:
        return auth_service.create_token(identity)
    return _token


# ===========================
# Pytest Configuration
# ===========================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that drive the ASGI application"
    )
    config.addinivalue_line(
        "markers", "requires_redis: marks tests requiring Redis connection (TEST_REDIS_URL)"
    )
