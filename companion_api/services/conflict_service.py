from datetime import date, time

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.models.booking import ACTIVE_STATUSES, Booking
from companion_api.models.user import User

# Driver messages that mean "another transaction got there first"
_CONTENTION_MARKERS = (
    "database is locked",
    "deadlock detected",
    "could not serialize access",
    "could not obtain lock",
)


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open [start, end) overlap; touching intervals do not overlap."""
    return start_a < end_b and end_a > start_b


async def lock_provider_schedule(session: AsyncSession, provider_id: int) -> None:
    """Lock the provider so check-then-insert is serialized per provider.

    Must run in the same transaction as the write it protects, before any read
    of that transaction. SQLite ignores FOR UPDATE, so there a no-op UPDATE of
    the provider row takes the database write lock instead; other writers wait
    on the busy timeout and read the committed schedule once they get it.
    """
    if session.bind is not None and session.bind.dialect.name == "sqlite":
        await session.execute(
            update(User)
            .where(User.id == provider_id)
            .values(id=User.id)
            .execution_options(synchronize_session=False)
        )
    else:
        await session.execute(select(User.id).where(User.id == provider_id).with_for_update())


async def has_conflict(
    session: AsyncSession,
    provider_id: int,
    d: date,
    start: time,
    end: time,
    exclude_booking_id: int | None = None,
) -> bool:
    """True when [start, end) overlaps a pending or confirmed booking of the provider on d."""
    q = select(Booking.id).where(
        Booking.provider_id == provider_id,
        Booking.booking_date == d,
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.start_time < end,
        Booking.end_time > start,
    )
    if exclude_booking_id is not None:
        q = q.where(Booking.id != exclude_booking_id)
    result = await session.execute(q.limit(1))
    return result.first() is not None


def is_reservation_race(exc: DBAPIError) -> bool:
    """Whether a store error means a concurrent reservation won the slot."""
    if isinstance(exc, IntegrityError):
        return True
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _CONTENTION_MARKERS)
