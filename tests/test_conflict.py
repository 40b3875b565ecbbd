"""Overlap detection and atomic reservation under concurrent load."""

import asyncio
from datetime import time

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from companion_api.core.exceptions import ConflictError
from companion_api.models import Booking, BookingStatus, Role, Weekday
from companion_api.services import booking_service
from companion_api.services.booking_service import create_booking
from companion_api.services.conflict_service import (
    has_conflict,
    intervals_overlap,
    is_reservation_race,
)
from tests.conftest import MONDAY, NOW, add_booking, add_window, make_user


class TestIntervalsOverlap:
    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ((time(9), time(10)), (time(9, 30), time(11)), True),
            ((time(9), time(12)), (time(10), time(11)), True),
            ((time(9), time(10)), (time(10), time(11)), False),
            ((time(11), time(12)), (time(10), time(11)), False),
            ((time(9), time(10)), (time(13), time(14)), False),
        ],
    )
    def test_half_open(self, a, b, expected):
        assert intervals_overlap(*a, *b) is expected
        assert intervals_overlap(*b, *a) is expected


class TestHasConflict:
    @pytest.mark.asyncio
    async def test_only_active_bookings_block(self, session, companion, client_user):
        for status, start in (
            (BookingStatus.CANCELLED, time(9)),
            (BookingStatus.COMPLETED, time(11)),
            (BookingStatus.NO_SHOW, time(13)),
            (BookingStatus.PENDING, time(15)),
        ):
            await add_booking(session, client_user, companion, MONDAY, start, time(start.hour + 1), status=status)

        assert not await has_conflict(session, companion.id, MONDAY, time(9), time(15))
        assert await has_conflict(session, companion.id, MONDAY, time(14, 30), time(15, 30))
        assert not await has_conflict(session, companion.id, MONDAY, time(16), time(17))

    @pytest.mark.asyncio
    async def test_exclude_booking_id(self, session, companion, client_user):
        booking = await add_booking(session, client_user, companion, MONDAY, time(10), time(11))

        assert await has_conflict(session, companion.id, MONDAY, time(10), time(11))
        assert not await has_conflict(
            session, companion.id, MONDAY, time(10), time(11), exclude_booking_id=booking.id
        )

    @pytest.mark.asyncio
    async def test_other_provider_does_not_block(self, session, companion, other_companion, client_user):
        await add_booking(session, client_user, other_companion, MONDAY, time(10), time(11))

        assert not await has_conflict(session, companion.id, MONDAY, time(10), time(11))


class TestReservationRace:
    def test_integrity_error_is_race(self):
        assert is_reservation_race(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))

    def test_lock_errors_are_race(self):
        assert is_reservation_race(OperationalError("INSERT", {}, Exception("database is locked")))
        assert is_reservation_race(OperationalError("INSERT", {}, Exception("deadlock detected")))

    def test_other_errors_are_not(self):
        assert not is_reservation_race(ProgrammingError("SELECT", {}, Exception("syntax error")))
        assert not is_reservation_race(OperationalError("SELECT", {}, Exception("no such table: x")))

    @pytest.mark.asyncio
    async def test_unique_index_catches_missed_conflict(self, session, companion, client_user, monkeypatch):
        await add_window(session, companion, Weekday.MONDAY, time(9), time(17))
        await create_booking(session, client_user.id, companion.id, MONDAY, time(10), time(12), now=NOW)
        await session.commit()

        async def no_conflict(*args, **kwargs):
            return False

        monkeypatch.setattr(booking_service, "has_conflict", no_conflict)
        with pytest.raises(ConflictError):
            await create_booking(session, client_user.id, companion.id, MONDAY, time(10), time(12), now=NOW)

        result = await session.execute(select(Booking).where(Booking.provider_id == companion.id))
        assert len(result.scalars().all()) == 1


class TestConcurrentReservation:
    @pytest.mark.asyncio
    async def test_identical_concurrent_creates_yield_one_booking(self, session, session_maker, companion):
        await add_window(session, companion, Weekday.MONDAY, time(9), time(17))
        clients = [await make_user(session, f"client{i}@example.com", [Role.CLIENT]) for i in range(5)]

        async def attempt(client_id: int):
            async with session_maker() as s:
                booking = await create_booking(s, client_id, companion.id, MONDAY, time(10), time(12), now=NOW)
                await s.commit()
                return booking

        results = await asyncio.gather(*(attempt(c.id) for c in clients), return_exceptions=True)

        successes = [r for r in results if isinstance(r, Booking)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(successes) == 1, results
        assert len(conflicts) == 4, results

        async with session_maker() as s:
            rows = (await s.execute(select(Booking).where(Booking.provider_id == companion.id))).scalars().all()
        assert len(rows) == 1
        assert rows[0].id == successes[0].id


    @pytest.mark.asyncio
    async def test_overlapping_concurrent_creates_yield_one_booking(self, session, session_maker, companion):
        await add_window(session, companion, Weekday.MONDAY, time(9), time(17))
        windows = [
            (time(10), time(12)),
            (time(11), time(13)),
            (time(10, 30), time(12, 30)),
            (time(11, 30), time(13, 30)),
        ]
        clients = [await make_user(session, f"client{i}@example.com", [Role.CLIENT]) for i in range(len(windows))]

        async def attempt(client_id: int, start: time, end: time):
            async with session_maker() as s:
                booking = await create_booking(s, client_id, companion.id, MONDAY, start, end, now=NOW)
                await s.commit()
                return booking

        results = await asyncio.gather(
            *(attempt(c.id, start, end) for c, (start, end) in zip(clients, windows)),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, Booking)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(successes) == 1, results
        assert len(conflicts) == 3, results

        async with session_maker() as s:
            rows = (await s.execute(select(Booking).where(Booking.provider_id == companion.id))).scalars().all()
        assert [r.id for r in rows] == [successes[0].id]
