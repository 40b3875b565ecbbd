from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.core.config import settings
from companion_api.core.exceptions import ValidationError
from companion_api.models.availability import WEEKDAYS, AvailabilityWindow, Weekday
from companion_api.models.booking import Booking, BookingStatus
from companion_api.services.availability_service import get_windows


class SlotStatus(str, Enum):
    BOOKABLE = "bookable"
    BOOKED = "booked"


@dataclass(frozen=True)
class Slot:
    start: time
    end: time
    status: SlotStatus
    services: list[str] = field(default_factory=list)


@dataclass
class DaySummary:
    day_of_week: Weekday
    slots: list[Slot]

    @property
    def total_slots(self) -> int:
        return len(self.slots)

    @property
    def bookable_count(self) -> int:
        return sum(1 for s in self.slots if s.status == SlotStatus.BOOKABLE)

    @property
    def booked_count(self) -> int:
        return sum(1 for s in self.slots if s.status == SlotStatus.BOOKED)

    @property
    def is_available(self) -> bool:
        return self.bookable_count > 0


@dataclass
class WeeklyPattern:
    days: dict[Weekday, list[AvailabilityWindow]]

    @property
    def available_days(self) -> list[Weekday]:
        return [d for d, windows in self.days.items() if any(w.is_available for w in windows)]

    @property
    def total_slots_per_week(self) -> int:
        return sum(1 for windows in self.days.values() for w in windows if w.is_available)


def split_window(
    start: time, end: time, busy: list[tuple[time, time]]
) -> list[tuple[time, time, bool]]:
    """Split [start, end) around busy intervals.

    Returns (start, end, is_booked) pieces in order. Busy intervals are clipped
    to the window; overlapping busy intervals collapse into one booked piece.
    """
    pieces: list[tuple[time, time, bool]] = []
    cursor = start
    for b_start, b_end in sorted(busy):
        if b_end <= start or b_start >= end:
            continue
        b_start, b_end = max(b_start, start), min(b_end, end)
        if b_end <= cursor:
            continue
        if b_start > cursor:
            pieces.append((cursor, b_start, False))
            cursor = b_start
        if pieces and pieces[-1][2] and pieces[-1][1] > b_start:
            # overlaps the previous booked piece
            pieces[-1] = (pieces[-1][0], b_end, True)
        else:
            pieces.append((cursor, b_end, True))
        cursor = b_end
    if cursor < end:
        pieces.append((cursor, end, False))
    return pieces


def build_daily_slots(windows: list[AvailabilityWindow], bookings: list[Booking]) -> list[Slot]:
    """Slots for one date from that weekday's windows and that date's bookings."""
    busy = [(b.start_time, b.end_time) for b in bookings]
    slots: list[Slot] = []
    for w in windows:
        if not w.is_available:
            continue
        for s, e, booked in split_window(w.start_time, w.end_time, busy):
            slots.append(
                Slot(
                    start=s,
                    end=e,
                    status=SlotStatus.BOOKED if booked else SlotStatus.BOOKABLE,
                    services=list(w.services or []),
                )
            )
    slots.sort(key=lambda s: s.start)
    return slots


async def _get_schedule_bookings(
    session: AsyncSession, provider_id: int, start_date: date, end_date: date
) -> list[Booking]:
    """Every booking that consumes time on the schedule (anything not cancelled)."""
    result = await session.execute(
        select(Booking)
        .where(
            Booking.provider_id == provider_id,
            Booking.booking_date >= start_date,
            Booking.booking_date <= end_date,
            Booking.status != BookingStatus.CANCELLED.value,
        )
        .order_by(Booking.booking_date, Booking.start_time)
    )
    return list(result.scalars().all())


async def generate_daily_slots(session: AsyncSession, provider_id: int, d: date) -> list[Slot]:
    windows = await get_windows(session, provider_id, day=Weekday.for_date(d), available_only=True)
    if not windows:
        return []
    bookings = await _get_schedule_bookings(session, provider_id, d, d)
    return build_daily_slots(windows, bookings)


async def generate_range_summary(
    session: AsyncSession, provider_id: int, start_date: date, end_date: date
) -> dict[date, DaySummary]:
    """Per-date rollup for the inclusive range, built exactly as generate_daily_slots would."""
    if start_date > end_date:
        raise ValidationError("startDate must be on or before endDate")
    span = (end_date - start_date).days + 1
    if span > settings.max_calendar_range_days:
        raise ValidationError(f"Date range cannot exceed {settings.max_calendar_range_days} days")

    windows_by_day: dict[str, list[AvailabilityWindow]] = defaultdict(list)
    for w in await get_windows(session, provider_id, available_only=True):
        windows_by_day[w.day_of_week].append(w)
    bookings_by_date: dict[date, list[Booking]] = defaultdict(list)
    if windows_by_day:
        for b in await _get_schedule_bookings(session, provider_id, start_date, end_date):
            bookings_by_date[b.booking_date].append(b)

    summary: dict[date, DaySummary] = {}
    for offset in range(span):
        d = start_date + timedelta(days=offset)
        day = Weekday.for_date(d)
        day_windows = sorted(windows_by_day.get(day.value, []), key=lambda w: w.start_time)
        summary[d] = DaySummary(
            day_of_week=day,
            slots=build_daily_slots(day_windows, bookings_by_date.get(d, [])),
        )
    return summary


async def generate_weekly_pattern(session: AsyncSession, provider_id: int) -> WeeklyPattern:
    days: dict[Weekday, list[AvailabilityWindow]] = {d: [] for d in WEEKDAYS}
    for w in await get_windows(session, provider_id):
        days[Weekday(w.day_of_week)].append(w)
    for windows in days.values():
        windows.sort(key=lambda w: w.start_time)
    return WeeklyPattern(days=days)


async def slot_fits(
    session: AsyncSession, provider_id: int, d: date, start: time, end: time
) -> bool:
    """Whether [start, end) lies entirely inside one bookable slot on d."""
    return any(
        s.status == SlotStatus.BOOKABLE and s.start <= start and end <= s.end
        for s in await generate_daily_slots(session, provider_id, d)
    )


async def fits_template(
    session: AsyncSession, provider_id: int, d: date, start: time, end: time
) -> bool:
    """Whether [start, end) lies inside one available weekly window for d's weekday. Ignores bookings."""
    windows = await get_windows(session, provider_id, day=Weekday.for_date(d), available_only=True)
    return any(w.start_time <= start and end <= w.end_time for w in windows)
