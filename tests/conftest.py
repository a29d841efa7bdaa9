"""Shared test fixtures."""

import os
from datetime import datetime, timedelta, timezone

# Set env vars before any proxyguard imports so Settings picks them up
os.environ.setdefault("PROXYGUARD_API_KEYS", "test-key-123")
os.environ.setdefault("PROXYGUARD_DATABASE_URL", "sqlite+aiosqlite://")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from proxyguard.config import Settings
from proxyguard.engine.container import ProxyServices, build_services
from proxyguard.engine.strategies import UndoRegistry
from proxyguard.models.base import Base
from proxyguard.models.audit_log import ProxyAuditLog  # noqa: F401  (register model)
from proxyguard.models.authorization import ProxyAuthorization  # noqa: F401  (register model)
from proxyguard.models.consent_history import ConsentHistory  # noqa: F401  (register model)
from proxyguard.models.rollback import ProxyRollback  # noqa: F401  (register model)
from proxyguard.schemas.audit import LogProxyActionParams

API_KEY = "test-key-123"
API_KEY_HEADER = {"X-API-Key": API_KEY}


def user_headers(user_id: str = "user-1") -> dict[str, str]:
    return {**API_KEY_HEADER, "X-User-ID": user_id}


# Tuesday 2026-03-10 12:00 UTC
BASE_TIME = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

# In-memory async SQLite engine for tests
_test_engine = create_async_engine("sqlite+aiosqlite://", echo=False)
_test_session_factory = async_sessionmaker(
    _test_engine, class_=AsyncSession, expire_on_commit=False
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create tables before each test, drop after."""
    async with _test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with _test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db():
    async with _test_session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def _override_db_dependency():
    """Override the get_db dependency to use the test database."""
    from proxyguard.db.session import get_db
    from proxyguard.main import app

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.pop(get_db, None)


class FrozenClock:
    """Deterministic stand-in for utc_now()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingUndo:
    """Undo capability that remembers every call and can be told to fail."""

    def __init__(self, error: Exception | None = None):
        self.calls: list[tuple[str, dict]] = []
        self.error = error

    async def __call__(self, action_class: str, rollback_data: dict) -> None:
        self.calls.append((action_class, rollback_data))
        if self.error is not None:
            raise self.error


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(BASE_TIME)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        policy_timezone="UTC",
        rollback_window_hours=24,
        rollback_timeout_seconds=5.0,
    )


@pytest.fixture
def undo() -> RecordingUndo:
    return RecordingUndo()


@pytest.fixture
def undo_registry(undo: RecordingUndo) -> UndoRegistry:
    return UndoRegistry(
        {
            "create_calendar_event": undo,
            "create_task": undo,
            "create_github_issue": undo,
            "update_calendar_event": undo,
            "update_task": undo,
            "update_github_issue": undo,
            "delete_calendar_event": undo,
        }
    )


@pytest.fixture
async def session():
    async with _test_session_factory() as session:
        yield session


@pytest.fixture
def services(session, clock, test_settings, undo_registry) -> ProxyServices:
    return build_services(
        session, undo_registry=undo_registry, settings=test_settings, clock=clock
    )


@pytest.fixture
def make_action():
    """Factory for audit log parameters."""

    def _make(
        user_id: str = "user-1",
        action_class: str = "create_task",
        success: bool = True,
        **overrides,
    ) -> LogProxyActionParams:
        fields = {
            "user_id": user_id,
            "action": f"{action_class} on behalf of {user_id}",
            "action_class": action_class,
            "input": {},
            "output": {},
            "success": success,
        }
        fields.update(overrides)
        return LogProxyActionParams(**fields)

    return _make
