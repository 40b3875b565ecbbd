"""Shared test fixtures and helpers."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_SSL"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENV"] = "test"

from datetime import date, datetime, time, timedelta
from typing import Optional

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from companion_api.core.security import create_access_token
from companion_api.models import (  # noqa: F401 - register tables
    AvailabilityAuditLog,
    AvailabilityWindow,
    AvailabilityWindowCreate,
    Booking,
    BookingRequest,
    BookingStatus,
    RateLimitHit,
    Role,
    ServiceCategory,
    User,
    UserRole,
    Weekday,
)

# Fixed "now" for service-level tests: Monday 2030-01-07 08:00 UTC
NOW = datetime(2030, 1, 7, 8, 0)
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
NEXT_MONDAY = date(2030, 1, 14)


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _set_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


async def make_user(
    session: AsyncSession,
    email: str,
    roles: Optional[list[Role]] = None,
    full_name: Optional[str] = None,
    active: bool = True,
) -> User:
    """Create and commit a user holding the given roles."""
    user = User(email=email, full_name=full_name or email.split("@")[0])
    session.add(user)
    await session.flush()
    for role in roles or [Role.CLIENT]:
        session.add(UserRole(user_id=user.id, role=role.value, is_active=active))
    await session.commit()
    return user


async def add_window(
    session: AsyncSession,
    provider: User,
    day: Weekday,
    start: time,
    end: time,
    is_available: bool = True,
    services: Optional[list[str]] = None,
) -> AvailabilityWindow:
    window = AvailabilityWindow(
        provider_id=provider.id,
        day_of_week=day.value,
        start_time=start,
        end_time=end,
        is_available=is_available,
        services=services or [],
    )
    session.add(window)
    await session.commit()
    return window


async def add_booking(
    session: AsyncSession,
    client: User,
    provider: User,
    d: date,
    start: time,
    end: time,
    status: BookingStatus = BookingStatus.CONFIRMED,
) -> Booking:
    """Insert a booking row directly, bypassing create_booking's checks."""
    hours = (datetime.combine(d, end) - datetime.combine(d, start)).seconds / 3600
    booking = Booking(
        client_id=client.id,
        provider_id=provider.id,
        booking_date=d,
        start_time=start,
        end_time=end,
        duration_hours=hours,
        total_amount=round(hours * 35, 2),
        status=status.value,
        created_at=NOW,
        updated_at=NOW,
    )
    session.add(booking)
    await session.commit()
    return booking


def window(day: Weekday, start: time, end: time, **kwargs) -> AvailabilityWindowCreate:
    return AvailabilityWindowCreate(day_of_week=day, start_time=start, end_time=end, **kwargs)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def future_weekday(weekday: int, weeks_ahead: int = 2) -> date:
    """A real calendar date on the given weekday (Monday == 0), safely in the future."""
    start = date.today() + timedelta(weeks=weeks_ahead)
    return start + timedelta(days=(weekday - start.weekday()) % 7)


@pytest.fixture
async def client_user(session):
    return await make_user(session, "client@example.com", [Role.CLIENT])


@pytest.fixture
async def companion(session):
    return await make_user(session, "companion@example.com", [Role.COMPANION], full_name="Casey")


@pytest.fixture
async def other_companion(session):
    return await make_user(session, "other@example.com", [Role.COMPANION])


@pytest.fixture
async def outsider(session):
    return await make_user(session, "outsider@example.com", [Role.CLIENT])
