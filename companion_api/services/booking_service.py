import logging
from datetime import date, datetime, time

from sqlalchemy import or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.core.clock import utc_naive_now
from companion_api.core.config import settings
from companion_api.core.exceptions import (
    AuthorizationError,
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from companion_api.models.booking import (
    ACTIVE_STATUSES,
    Booking,
    BookingCreate,
    BookingStatus,
    PaymentStatus,
)
from companion_api.models.service_category import ServiceCategory
from companion_api.models.user import Role
from companion_api.services.audit_service import RequestMeta
from companion_api.services.conflict_service import has_conflict, is_reservation_race, lock_provider_schedule
from companion_api.services.ownership import ensure_booking_party, reject_actor, require_active_provider
from companion_api.services.slot_service import fits_template

logger = logging.getLogger(__name__)

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.UNPAID: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# Which party may drive each transition. "system" means actor_id=None.
_TRANSITION_ACTORS: dict[tuple[BookingStatus, BookingStatus], frozenset[str]] = {
    (BookingStatus.PENDING, BookingStatus.CONFIRMED): frozenset({"provider"}),
    (BookingStatus.PENDING, BookingStatus.CANCELLED): frozenset({"provider", "client"}),
    (BookingStatus.CONFIRMED, BookingStatus.CANCELLED): frozenset({"provider", "client"}),
    (BookingStatus.CONFIRMED, BookingStatus.COMPLETED): frozenset({"provider", "system"}),
    (BookingStatus.CONFIRMED, BookingStatus.NO_SHOW): frozenset({"provider"}),
}


def duration_hours(start: time, end: time) -> float:
    """Decimal hours between two times on the same day."""
    minutes = (end.hour * 60 + end.minute + end.second / 60) - (start.hour * 60 + start.minute + start.second / 60)
    return round(minutes / 60, 2)


def validate_booking_window(
    d: date, start: time, end: time, now: datetime, label: str = "Booking"
) -> float:
    """Check a proposed window; return its duration in hours. Raises ValidationError."""
    if end <= start:
        raise ValidationError("End time must be after start time")
    hours = duration_hours(start, end)
    if hours < settings.min_booking_hours:
        raise ValidationError(f"{label} duration must be at least {settings.min_booking_hours:g} hour(s)")
    if hours > settings.max_booking_hours:
        raise ValidationError(f"{label} duration cannot exceed {settings.max_booking_hours:g} hours")
    if datetime.combine(d, start) <= now:
        raise ValidationError(f"{label} date and time must be in the future")
    return hours


def booking_total(hours: float, rate: float) -> float:
    return round(hours * rate, 2)


async def _hourly_rate(session: AsyncSession, service_category_id: int | None) -> float:
    if service_category_id is None:
        return settings.default_hourly_rate
    category = await session.get(ServiceCategory, service_category_id)
    if category is None or not category.is_active:
        raise NotFoundError("Service category not found or inactive")
    return float(category.base_price)


async def create_booking(
    session: AsyncSession,
    client_id: int,
    provider_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    data: BookingCreate | None = None,
    now: datetime | None = None,
    initial_status: BookingStatus = BookingStatus.PENDING,
    require_slot: bool = True,
) -> Booking:
    """Reserve [start_time, end_time) on booking_date with the provider.

    The conflict check and the insert run in the caller's transaction under
    the provider's schedule lock. A concurrent reservation that slips past the
    check is caught by the partial unique index and reported as ConflictError.

    With ``require_slot`` the window must also lie inside one available window
    of the provider's weekly template; bookings agreed through a booking
    request pass ``require_slot=False``.
    """
    now = now or utc_naive_now()
    data = data or BookingCreate()
    if client_id == provider_id:
        raise ValidationError("You cannot book yourself as a companion")
    if initial_status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
        raise ValidationError("New bookings must start as pending or confirmed")
    hours = validate_booking_window(booking_date, start_time, end_time, now)

    await require_active_provider(session, provider_id)
    rate = await _hourly_rate(session, data.service_category_id)

    try:
        await lock_provider_schedule(session, provider_id)
        if await has_conflict(session, provider_id, booking_date, start_time, end_time):
            logger.info(
                "Booking conflict: provider=%s date=%s %s-%s",
                provider_id, booking_date, start_time, end_time,
            )
            raise ConflictError("Time slot is already booked")
        if require_slot and not await fits_template(session, provider_id, booking_date, start_time, end_time):
            raise ValidationError("The companion is not available at that time; send a booking request instead")
        booking = Booking(
            client_id=client_id,
            provider_id=provider_id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            duration_hours=hours,
            total_amount=booking_total(hours, rate),
            status=initial_status.value,
            payment_status=PaymentStatus.UNPAID.value,
            meeting_type=data.meeting_type.value,
            service_category_id=data.service_category_id,
            special_requests=data.special_requests,
            meeting_location=data.meeting_location,
            booking_request_id=data.booking_request_id,
            created_at=now,
            updated_at=now,
        )
        session.add(booking)
        await session.flush()
    except DBAPIError as e:
        if not is_reservation_race(e):
            raise
        await session.rollback()
        logger.info("Concurrent reservation won provider=%s date=%s %s: %s", provider_id, booking_date, start_time, e)
        raise ConflictError("Time slot is already booked") from e

    await session.refresh(booking)
    logger.info(
        "Booking %s created: client=%s provider=%s date=%s %s-%s status=%s",
        booking.id, client_id, provider_id, booking_date, start_time, end_time, booking.status,
    )
    return booking


async def get_booking(session: AsyncSession, booking_id: int) -> Booking:
    booking = await session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


async def get_booking_for_actor(
    session: AsyncSession, booking_id: int, actor_id: int, meta: RequestMeta | None = None
) -> Booking:
    booking = await get_booking(session, booking_id)
    await ensure_booking_party(session, booking, actor_id, meta)
    return booking


def _actor_kind(booking: Booking, actor_id: int | None) -> str:
    if actor_id is None:
        return "system"
    if actor_id == booking.provider_id:
        return "provider"
    return "client"


async def transition_booking(
    session: AsyncSession,
    booking_id: int,
    actor_id: int | None,
    target: BookingStatus,
    now: datetime | None = None,
    reason: str | None = None,
    meta: RequestMeta | None = None,
) -> Booking:
    """Move a booking along the lifecycle. actor_id=None is the system sweep."""
    now = now or utc_naive_now()
    booking = await get_booking(session, booking_id)
    if actor_id is not None:
        await ensure_booking_party(session, booking, actor_id, meta)

    current = BookingStatus(booking.status)
    if target not in BOOKING_TRANSITIONS[current]:
        raise IllegalTransitionError(f"Cannot change booking from {current.value} to {target.value}")

    kind = _actor_kind(booking, actor_id)
    if kind not in _TRANSITION_ACTORS[(current, target)]:
        if kind == "system":
            raise AuthorizationError(f"Only a party to the booking may mark it {target.value}")
        await reject_actor(
            session, booking, actor_id, f"The {kind} cannot mark this booking {target.value}", meta
        )
    if target == BookingStatus.COMPLETED and booking.ends_at > now:
        raise IllegalTransitionError("A booking can only be completed after it ends")
    if target == BookingStatus.NO_SHOW and booking.starts_at > now:
        raise IllegalTransitionError("A no-show can only be recorded after the booking starts")

    # Guard against a concurrent transition: only apply if the status is unchanged.
    result = await session.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == current.value)
        .values(
            status=target.value,
            updated_at=now,
            cancellation_reason=reason if target == BookingStatus.CANCELLED else Booking.cancellation_reason,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise IllegalTransitionError("Booking status changed concurrently; reload and retry")
    await session.refresh(booking)
    logger.info(
        "Booking %s: %s -> %s by %s %s", booking.id, current.value, target.value, kind, actor_id
    )
    return booking


async def update_payment_status(
    session: AsyncSession,
    booking_id: int,
    actor_id: int,
    payment_status: PaymentStatus,
    payment_method: str | None = None,
    payment_intent_id: str | None = None,
    now: datetime | None = None,
    meta: RequestMeta | None = None,
) -> Booking:
    now = now or utc_naive_now()
    booking = await get_booking(session, booking_id)
    await ensure_booking_party(session, booking, actor_id, meta)

    current = PaymentStatus(booking.payment_status)
    if payment_status not in PAYMENT_TRANSITIONS[current]:
        raise IllegalTransitionError(
            f"Cannot change payment from {current.value} to {payment_status.value}"
        )
    if booking.status == BookingStatus.CANCELLED and payment_status != PaymentStatus.REFUNDED:
        raise IllegalTransitionError("Cancelled bookings can only be refunded")

    booking.payment_status = payment_status.value
    if payment_method is not None:
        booking.payment_method = payment_method
    if payment_intent_id is not None:
        booking.payment_intent_id = payment_intent_id
    if payment_status == PaymentStatus.PAID:
        booking.paid_at = now
    booking.updated_at = now
    session.add(booking)
    await session.flush()
    logger.info("Booking %s payment: %s -> %s", booking.id, current.value, payment_status.value)
    return booking


async def list_bookings_for_user(
    session: AsyncSession,
    user_id: int,
    role: Role | None = None,
    status: BookingStatus | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Booking]:
    """Bookings where the user is the client, the provider, or either when role is None."""
    if role == Role.CLIENT:
        q = select(Booking).where(Booking.client_id == user_id)
    elif role == Role.COMPANION:
        q = select(Booking).where(Booking.provider_id == user_id)
    else:
        q = select(Booking).where(or_(Booking.client_id == user_id, Booking.provider_id == user_id))
    if status is not None:
        q = q.where(Booking.status == status.value)
    q = q.order_by(Booking.booking_date.desc(), Booking.start_time.desc()).limit(limit).offset(offset)
    result = await session.execute(q)
    return list(result.scalars().all())


async def list_pending_for_provider(session: AsyncSession, provider_id: int) -> list[Booking]:
    result = await session.execute(
        select(Booking)
        .where(Booking.provider_id == provider_id, Booking.status == BookingStatus.PENDING.value)
        .order_by(Booking.booking_date, Booking.start_time)
    )
    return list(result.scalars().all())


async def list_provider_bookings_in_range(
    session: AsyncSession, provider_id: int, start_date: date, end_date: date
) -> list[Booking]:
    if start_date > end_date:
        raise ValidationError("startDate must be on or before endDate")
    result = await session.execute(
        select(Booking)
        .where(
            Booking.provider_id == provider_id,
            Booking.booking_date >= start_date,
            Booking.booking_date <= end_date,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Booking.booking_date, Booking.start_time)
    )
    return list(result.scalars().all())


async def complete_finished_bookings(session: AsyncSession, now: datetime | None = None) -> int:
    """System sweep: confirmed bookings whose end has passed become completed."""
    now = now or utc_naive_now()
    result = await session.execute(
        select(Booking)
        .where(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.booking_date <= now.date(),
        )
        .order_by(Booking.booking_date, Booking.start_time, Booking.id)
    )
    finished = [b for b in result.scalars().all() if b.ends_at <= now]
    completed = 0
    for b in finished:
        try:
            await transition_booking(session, b.id, None, BookingStatus.COMPLETED, now=now)
        except IllegalTransitionError as e:
            logger.info("Skipping completion of booking %s: %s", b.id, e)
            continue
        completed += 1
    return completed
