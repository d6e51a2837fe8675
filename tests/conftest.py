"""
Pytest configuration and shared fixtures for testing.
Provides settings overrides, stores, a controllable clock and fake push connections.
"""
import pytest
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

# Set testing environment before importing the package
os.environ["ENVIRONMENT"] = "testing"
os.environ["SESSION_STORE_TYPE"] = "in_memory"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"  # Test DB
os.environ["ENABLE_TELEMETRY"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from livechat.api.connections import ConnectionManager
from livechat.config import Settings
from livechat.models.chat import ChatSession, HistoryEntry, Sender
from livechat.presence import PresenceTracker
from livechat.services import ChatService, EscalationService
from livechat.session import InMemorySessionStore


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests that run the ASGI app or a real database")
    config.addinivalue_line("markers", "requires_redis: tests that need a running Redis server")


# ===========================
# Settings Fixtures
# ===========================

@pytest.fixture
def test_settings() -> Settings:
    """
    Create test settings instance.
    Override default settings for testing environment.
    """
    return Settings(
        environment="testing",
        debug=True,
        session_store_type="in_memory",
        enable_telemetry=False,
        rate_limit_enabled=False,
        max_message_length=500,
        escalation_history_limit=10,
        session_cleanup_interval_seconds=3600
    )


# ===========================
# Time Fixtures
# ===========================

class FakeClock:
    """Settable UTC clock for presence tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ===========================
# Push Connection Fixtures
# ===========================

class FakeConnection:
    """Stands in for a WebSocket; records every frame sent to it."""

    def __init__(self, name: str = "conn", fail: bool = False):
        self.name = name
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionResetError(f"{self.name} is gone")
        self.sent.append(data)

    def frames(self, event_type: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame["type"] == event_type]

    def types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def __repr__(self) -> str:
        return f"FakeConnection({self.name})"


@pytest.fixture
def make_connection():
    def _make(name: str = "conn", fail: bool = False) -> FakeConnection:
        return FakeConnection(name, fail)
    return _make


# ===========================
# Hub Fixtures
# ===========================

@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore(max_sessions=100)


@pytest.fixture
def presence(store, clock) -> PresenceTracker:
    return PresenceTracker(store, stale_threshold_seconds=120, clock=clock)


@pytest.fixture
def connections() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
def escalation_service(store, presence, connections, test_settings) -> EscalationService:
    return EscalationService(store, presence, connections, test_settings)


@pytest.fixture
def chat_service(store, presence, connections, test_settings) -> ChatService:
    return ChatService(store, presence, connections, test_settings)


@pytest.fixture
def escalated_session(escalation_service):
    """Factory for a session already waiting for an admin."""
    async def _escalate(session_id: str = "chat-pending-001", email: str = "user@example.com"):
        result = await escalation_service.request_escalation(
            session_id,
            contact_email=email,
            recent_messages=[HistoryEntry(sender=Sender.USER, text="I need a human")]
        )
        return result.session
    return _escalate


# ===========================
# Utility Fixtures
# ===========================

@pytest.fixture
def temp_dir():
    """Create temporary directory for file operations in tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_history() -> List[HistoryEntry]:
    """Bot conversation preceding an escalation."""
    return [
        HistoryEntry(sender=Sender.USER, text="How do I transfer my ticket?"),
        HistoryEntry(sender=Sender.BOT, text="You can transfer it from the My Tickets page."),
        HistoryEntry(sender=Sender.USER, text="That page shows an error. Can I talk to a person?"),
    ]


@pytest.fixture
def new_session():
    def _make(session_id: str = "chat-001", **kwargs) -> ChatSession:
        return ChatSession(id=session_id, **kwargs)
    return _make
