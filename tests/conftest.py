"""Shared fixtures: a throwaway SQLite database, a fixed clock and a recording notifier."""
from datetime import date, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from table_booking import models  # noqa: F401  (registers the tables)
from table_booking.lifecycle import ReservationService
from table_booking.locks import SlotLocks
from table_booking.models import ReservationCreate, SettingsUpdate
from table_booking.notifications import Notifier

# Monday 1 Dec 2025, noon at the restaurant
NOW = datetime(2025, 12, 1, 12, 0)
# Monday two weeks later: open 17:00-22:00 by default
DAY = date(2025, 12, 15)


def fixed_clock() -> datetime:
    return NOW


class RecordingNotifier(Notifier):
    """Keeps every notification instead of sending it."""

    def __init__(self):
        self.sent = []

    async def notify(self, kind, recipient, payload):
        self.sent.append((kind, recipient, payload))

    def kinds(self):
        return [kind for kind, _, _ in self.sent]


class FailingNotifier(Notifier):
    async def notify(self, kind, recipient, payload):
        raise RuntimeError("mail server down")


def booking(**overrides) -> ReservationCreate:
    data = {
        "guest_name": "Test Guest",
        "email": "guest@example.com",
        "phone": "+1 (312) 555-0100",
        "date": DAY,
        "time": "19:00",
        "party_size": 2,
    }
    data.update(overrides)
    return ReservationCreate(**data)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def locks():
    return SlotLocks()


@pytest.fixture
def make_service(notifier, locks):
    """Build a ReservationService on a given session with the fixed clock."""

    def make(session, **kwargs):
        kwargs.setdefault("clock", fixed_clock)
        return ReservationService(session, kwargs.pop("notifier", notifier), locks, **kwargs)

    return make


@pytest.fixture
async def service(session, make_service):
    service = make_service(session)
    await service.settings.get()
    return service


@pytest.fixture
def configure(service):
    """Patch the restaurant settings for one test."""

    async def apply(**fields):
        return await service.settings.update(SettingsUpdate(**fields))

    return apply
