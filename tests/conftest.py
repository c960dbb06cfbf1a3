"""Shared test fixtures."""
import os

# database.py fails fast without a URL; must be set before it is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import select

from appointments import SqlAppointmentLookup
from database import init_db
from models import Appointment, AppointmentStatus, SlotHold
from slot_holds import SlotHoldManager

PROFESSIONAL_ID = "prof_123"
SLOT_START = datetime(2026, 2, 15, 10, 0)


class FrozenClock:
    """Clock that only moves when a test tells it to."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest_asyncio.fixture
async def engine():
    # One shared in-memory database for every session in the test
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 2, 15, 9, 0))


@pytest.fixture
def manager(session_factory, clock):
    return SlotHoldManager(session_factory, SqlAppointmentLookup(), clock=clock)


@pytest.fixture
def add_hold(session_factory, clock):
    """Insert a hold row directly, bypassing the manager."""
    async def _add(session_id, start_time=SLOT_START, expires_in=timedelta(minutes=5),
                   professional_id=PROFESSIONAL_ID):
        hold = SlotHold(
            professional_id=professional_id,
            hold_date=start_time.date(),
            start_time=start_time,
            session_id=session_id,
            expires_at=clock.now() + expires_in,
            created_at=clock.now(),
        )
        async with session_factory() as session:
            session.add(hold)
            await session.commit()
        return hold
    return _add


@pytest.fixture
def add_appointment(session_factory):
    async def _add(status=AppointmentStatus.CONFIRMED, start_time=SLOT_START,
                   professional_id=PROFESSIONAL_ID):
        appointment = Appointment(
            professional_id=professional_id,
            appointment_date=start_time.date(),
            start_time=start_time,
            patient_name="Ana Perez",
            status=status,
        )
        async with session_factory() as session:
            session.add(appointment)
            await session.commit()
        return appointment
    return _add


@pytest.fixture
def fetch_holds(session_factory):
    async def _fetch():
        async with session_factory() as session:
            result = await session.execute(select(SlotHold))
            return result.scalars().all()
    return _fetch
