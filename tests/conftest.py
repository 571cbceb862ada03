"""
Shared test fixtures.

These replace real infrastructure with lightweight alternatives:
- PostgreSQL → a SQLite file per test (sync engine for the scheduling core,
  aiosqlite on the same file for the async API session)
- Redis → fakeredis; sync and async clients share one FakeServer, so what
  the dispatcher writes is what the API reads
- Google Calendar → FakeCalendar, an in-memory CalendarProvider
- HTTP server → httpx.AsyncClient with ASGI transport (no network)

A file instead of :memory: because the scheduler opens several sessions
(its own, the promoter's, the engine's) and they must see the same data.

Setting `fake_server.connected = False` makes every Redis call raise
ConnectionError, which is how the "Redis down" paths are tested.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import fakeredis
import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis as AsyncFakeRedis
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import sessionmaker

from api.dependencies import get_db, get_redis, get_scheduler, get_series_service
from api.main import create_app
from integrations.alerts import OperatorAlerter
from integrations.calendar import (
    CalendarEvent,
    CalendarEventNotFoundError,
    CalendarEventRef,
    CalendarProvider,
)
from models.booking import BookingSlot
from models.config_entry import ConfigEntry
from models.enums import AccountType, BookingSource, BookingStatus
from models.series import RecurringSeries
from models.tables import Base
from models.user import User
from recurrence.buffer import BufferRefreshEngine
from recurrence.series import SeriesService
from scheduler.dispatcher import FastDispatcher
from scheduler.engine import Scheduler
from scheduler.promoter import QueuePromoter
from scheduler.store import JobStore

# Monday 2026-01-05 09:00 UTC = 14:00 in Asia/Karachi (UTC+5, no DST)
NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FakeCalendar(CalendarProvider):
    """In-memory calendar. Queue exceptions in `fail_with` to make the next calls raise."""

    def __init__(self, connected: bool = True):
        self.connected = connected
        self.events: dict[str, CalendarEvent] = {}
        self.deleted: list[str] = []
        self.fail_with: list[Exception] = []

    def is_connected(self) -> bool:
        return self.connected

    def upsert_event(self, event: CalendarEvent) -> CalendarEventRef:
        if self.fail_with:
            raise self.fail_with.pop(0)
        if event.event_id is not None and event.event_id not in self.events:
            raise CalendarEventNotFoundError(event.event_id)
        event_id = event.event_id or f"evt-{uuid.uuid4().hex[:8]}"
        self.events[event_id] = event
        return CalendarEventRef(event_id=event_id, html_link=f"https://calendar.test/{event_id}")

    def delete_event(self, event_id: str) -> None:
        if self.fail_with:
            raise self.fail_with.pop(0)
        if event_id not in self.events:
            raise CalendarEventNotFoundError(event_id)
        del self.events[event_id]
        self.deleted.append(event_id)


class RecordingAlerter(OperatorAlerter):
    def __init__(self):
        self.alerts: list[tuple[str, dict]] = []

    def raise_alert(self, kind: str, context: dict) -> bool:
        self.alerts.append((kind, context))
        return True


# ── Database ────────────────────────────────────────────────────


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "scheduler.db"


@pytest.fixture
def sync_engine(db_path):
    """Create a fresh SQLite database file for each test."""
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine):
    return sessionmaker(sync_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


# ── Redis ───────────────────────────────────────────────────────


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(fake_server):
    """Create a fake Redis instance (in-memory, no real Redis needed)."""
    r = fakeredis.FakeRedis(server=fake_server)
    yield r
    if fake_server.connected:
        r.flushall()


@pytest.fixture
def dispatcher(redis_client):
    return FastDispatcher(redis_client)


@pytest.fixture
def queued(redis_client):
    """Whether a job body is currently held in Redis."""
    def _queued(job_id):
        return bool(redis_client.hexists(FastDispatcher.JOBS_KEY, str(job_id)))
    return _queued


# ── Scheduling core ─────────────────────────────────────────────


@pytest.fixture
def store():
    return JobStore()


@pytest.fixture
def promoter(dispatcher, session_factory, store):
    return QueuePromoter(dispatcher, session_factory, store=store)


@pytest.fixture
def scheduler(session_factory, promoter, store):
    return Scheduler(session_factory, promoter, store=store)


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def alerter():
    return RecordingAlerter()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def refresh_engine(session_factory, scheduler, calendar, alerter, clock):
    return BufferRefreshEngine(
        session_factory=session_factory,
        scheduler=scheduler,
        calendar=calendar,
        alerter=alerter,
        clock=clock,
    )


@pytest.fixture
def series_service(session_factory, scheduler, refresh_engine, clock):
    return SeriesService(session_factory, scheduler, refresh_engine, clock=clock)


# ── Domain data ─────────────────────────────────────────────────


@pytest.fixture
def prices(session):
    session.add_all([
        ConfigEntry(key="sessionPrice", value=8000),
        ConfigEntry(key="intlSessionPrice", value=60),
    ])
    session.commit()
    return {"PKR": Decimal("8000"), "USD": Decimal("60")}


@pytest.fixture
def make_user(session):
    def _make(name="Ayesha Khan", account_type=AccountType.DOMESTIC.value):
        user = User(
            name=name,
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            account_type=account_type,
        )
        session.add(user)
        session.commit()
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def make_series(session):
    def _make(user, interval="weekly", day_of_week=0, time_of_day="14:00", active=True, **kwargs):
        series = RecurringSeries(
            user_id=user.id,
            active=active,
            interval=interval,
            day_of_week=day_of_week,
            time_of_day=time_of_day,
            **kwargs,
        )
        session.add(series)
        session.commit()
        return series
    return _make


@pytest.fixture
def make_booking(session):
    def _make(start, minutes=50, user=None, series=None, status=BookingStatus.ACTIVE.value, **kwargs):
        booking = BookingSlot(
            user_id=user.id if user is not None else series.user_id,
            series_id=series.id if series is not None else None,
            event_start_time=start,
            event_end_time=start + timedelta(minutes=minutes),
            status=status,
            source=BookingSource.SYSTEM.value if series is not None else BookingSource.ADMIN.value,
            sync_status={"google": "pending"},
            **kwargs,
        )
        session.add(booking)
        session.commit()
        return booking
    return _make


# ── API ─────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def async_engine(sync_engine, db_path):
    """Async engine on the same SQLite file the sync fixtures use."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(async_engine):
    """Create a database session bound to the test engine."""
    factory = async_sessionmaker(async_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis(fake_server):
    """Async fake Redis sharing the sync client's server."""
    r = AsyncFakeRedis(server=fake_server)
    yield r
    await r.aclose()


@pytest_asyncio.fixture
async def client(async_session, fake_redis, scheduler, series_service):
    """
    Create a test HTTP client that talks directly to the FastAPI app.

    dependency_overrides swaps the real database, Redis and services for
    the test versions. ASGITransport means requests go directly to the app
    in-process; the lifespan does not run, so nothing touches Postgres.
    """
    app = create_app()

    async def override_get_db():
        yield async_session

    async def override_get_redis():
        return fake_redis

    async def override_get_scheduler():
        return scheduler

    async def override_get_series_service():
        return series_service

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_scheduler] = override_get_scheduler
    app.dependency_overrides[get_series_service] = override_get_series_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
