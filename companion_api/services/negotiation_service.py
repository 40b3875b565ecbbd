import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.core.clock import utc_naive_now
from companion_api.core.config import settings
from companion_api.core.exceptions import (
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from companion_api.models.booking import Booking, BookingCreate, BookingStatus, MeetingType
from companion_api.models.booking_request import (
    BookingRequest,
    BookingRequestCreate,
    CounterOffer,
    RequestDecision,
    RequestStatus,
)
from companion_api.models.user import Role
from companion_api.services.audit_service import RequestMeta
from companion_api.services.booking_service import create_booking, validate_booking_window
from companion_api.services.ownership import ensure_booking_party, reject_actor, require_active_provider
from companion_api.services.slot_service import slot_fits

logger = logging.getLogger(__name__)

# Hours assumed when a request only names a part of the day
DEFAULT_REQUEST_HOURS = 1.0


def apply_expiry(request: BookingRequest, now: datetime) -> bool:
    """Expire a pending request whose deadline has passed. Returns True if it changed."""
    if request.status == RequestStatus.PENDING and request.expires_at <= now:
        request.status = RequestStatus.EXPIRED.value
        request.updated_at = now
        return True
    return False


async def create_request(
    session: AsyncSession,
    client_id: int,
    provider_id: int,
    data: BookingRequestCreate,
    now: datetime | None = None,
) -> BookingRequest:
    """Open a negotiation for a date where no bookable slot fits the client."""
    now = now or utc_naive_now()
    if client_id == provider_id:
        raise ValidationError("You cannot send a booking request to yourself")
    if data.requested_date < now.date():
        raise ValidationError("Requested date must not be in the past")

    explicit = data.start_time is not None or data.end_time is not None
    if explicit:
        if data.start_time is None or data.end_time is None:
            raise ValidationError("Both startTime and endTime are required for an explicit time window")
        hours = validate_booking_window(data.requested_date, data.start_time, data.end_time, now, label="Request")
    elif data.preferred_time is None:
        raise ValidationError("Provide either a preferred time of day or an explicit time window")
    else:
        hours = data.duration_hours if data.duration_hours is not None else DEFAULT_REQUEST_HOURS
        if not settings.min_booking_hours <= hours <= settings.max_booking_hours:
            raise ValidationError(
                f"Duration must be between {settings.min_booking_hours:g} and {settings.max_booking_hours:g} hours"
            )

    await require_active_provider(session, provider_id)
    if explicit and await slot_fits(session, provider_id, data.requested_date, data.start_time, data.end_time):
        raise ValidationError("That time is available to book directly")

    request = BookingRequest(
        client_id=client_id,
        provider_id=provider_id,
        requested_date=data.requested_date,
        preferred_time=data.preferred_time.value if data.preferred_time else None,
        start_time=data.start_time,
        end_time=data.end_time,
        duration_hours=hours,
        service_category_id=data.service_category_id,
        meeting_type=data.meeting_type.value,
        special_requests=data.special_requests,
        meeting_location=data.meeting_location,
        status=RequestStatus.PENDING.value,
        expires_at=now + timedelta(hours=settings.booking_request_expiry_hours),
        created_at=now,
        updated_at=now,
    )
    session.add(request)
    await session.flush()
    await session.refresh(request)
    logger.info(
        "Booking request %s created: client=%s provider=%s date=%s expires=%s",
        request.id, client_id, provider_id, request.requested_date, request.expires_at,
    )
    return request


async def get_request(session: AsyncSession, request_id: int, now: datetime | None = None) -> BookingRequest:
    now = now or utc_naive_now()
    request = await session.get(BookingRequest, request_id)
    if request is None:
        raise NotFoundError("Booking request not found")
    if apply_expiry(request, now):
        session.add(request)
        await session.flush()
    return request


async def get_request_for_actor(
    session: AsyncSession,
    request_id: int,
    actor_id: int,
    now: datetime | None = None,
    meta: RequestMeta | None = None,
) -> BookingRequest:
    request = await get_request(session, request_id, now)
    await ensure_booking_party(session, request, actor_id, meta)
    return request


async def list_requests_for_user(
    session: AsyncSession,
    user_id: int,
    role: Role | None = None,
    status: RequestStatus | None = None,
    now: datetime | None = None,
) -> list[BookingRequest]:
    now = now or utc_naive_now()
    if role == Role.CLIENT:
        q = select(BookingRequest).where(BookingRequest.client_id == user_id)
    elif role == Role.COMPANION:
        q = select(BookingRequest).where(BookingRequest.provider_id == user_id)
    else:
        q = select(BookingRequest).where(
            or_(BookingRequest.client_id == user_id, BookingRequest.provider_id == user_id)
        )
    result = await session.execute(q.order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc()))
    requests = list(result.scalars().all())
    changed = [r for r in requests if apply_expiry(r, now)]
    if changed:
        session.add_all(changed)
        await session.flush()
    if status is not None:
        requests = [r for r in requests if r.status == status]
    return requests


def _booking_data(request: BookingRequest) -> BookingCreate:
    return BookingCreate(
        meeting_type=MeetingType(request.meeting_type),
        service_category_id=request.service_category_id,
        special_requests=request.special_requests,
        meeting_location=request.meeting_location,
        booking_request_id=request.id,
    )


async def _update_if(session: AsyncSession, request: BookingRequest, *conditions, **values) -> None:
    """Write values only while the stored row still matches conditions."""
    result = await session.execute(
        update(BookingRequest)
        .where(BookingRequest.id == request.id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise IllegalTransitionError("Booking request changed concurrently; reload and retry")
    await session.refresh(request)


async def respond_to_request(
    session: AsyncSession,
    request_id: int,
    provider_id: int,
    decision: RequestDecision,
    counter_offer: CounterOffer | None = None,
    reason: str | None = None,
    now: datetime | None = None,
    meta: RequestMeta | None = None,
) -> tuple[BookingRequest, Booking | None]:
    """Provider's answer to a pending request.

    Accepting the requested window books it immediately (confirmed, conflict
    checked against the current schedule). Accepting with a counter-offer
    leaves the request accepted until the client confirms. The answer is only
    written while the stored request is still pending.
    """
    now = now or utc_naive_now()
    request = await get_request(session, request_id, now)
    await ensure_booking_party(session, request, provider_id, meta)
    if provider_id != request.provider_id:
        await reject_actor(session, request, provider_id, "Only the companion can respond to this request", meta)
    if request.status != RequestStatus.PENDING:
        raise IllegalTransitionError(f"Booking request is already {request.status}")

    booking: Booking | None = None
    values = {"companion_response": reason, "responded_at": now, "updated_at": now}
    if decision == RequestDecision.REJECT:
        values["status"] = RequestStatus.REJECTED.value
    elif counter_offer is not None:
        validate_booking_window(
            counter_offer.suggested_date,
            counter_offer.suggested_start_time,
            counter_offer.suggested_end_time,
            now,
            label="Suggested booking",
        )
        values.update(
            status=RequestStatus.ACCEPTED.value,
            suggested_date=counter_offer.suggested_date,
            suggested_start_time=counter_offer.suggested_start_time,
            suggested_end_time=counter_offer.suggested_end_time,
        )
    else:
        if request.start_time is None or request.end_time is None:
            raise ValidationError("This request has no exact time; accept it with a suggested time instead")
        booking = await create_booking(
            session,
            client_id=request.client_id,
            provider_id=request.provider_id,
            booking_date=request.requested_date,
            start_time=request.start_time,
            end_time=request.end_time,
            data=_booking_data(request),
            now=now,
            initial_status=BookingStatus.CONFIRMED,
            require_slot=False,
        )
        values.update(status=RequestStatus.ACCEPTED.value, booking_id=booking.id)

    await _update_if(session, request, BookingRequest.status == RequestStatus.PENDING.value, **values)
    logger.info(
        "Booking request %s %s by provider %s (counter_offer=%s booking=%s)",
        request.id, request.status, provider_id, counter_offer is not None, request.booking_id,
    )
    return request, booking


async def confirm_counter_offer(
    session: AsyncSession,
    request_id: int,
    client_id: int,
    now: datetime | None = None,
    meta: RequestMeta | None = None,
) -> tuple[BookingRequest, Booking]:
    """Client's second step of a two-phase accept: book the suggested time."""
    now = now or utc_naive_now()
    request = await get_request(session, request_id, now)
    await ensure_booking_party(session, request, client_id, meta)
    if client_id != request.client_id:
        await reject_actor(session, request, client_id, "Only the client can confirm a suggested time", meta)
    if not request.awaiting_client_confirmation:
        raise IllegalTransitionError("This request has no suggested time awaiting confirmation")

    booking = await create_booking(
        session,
        client_id=request.client_id,
        provider_id=request.provider_id,
        booking_date=request.suggested_date,
        start_time=request.suggested_start_time,
        end_time=request.suggested_end_time,
        data=_booking_data(request),
        now=now,
        initial_status=BookingStatus.CONFIRMED,
        require_slot=False,
    )
    await _update_if(
        session,
        request,
        BookingRequest.status == RequestStatus.ACCEPTED.value,
        BookingRequest.booking_id.is_(None),
        booking_id=booking.id,
        updated_at=now,
    )
    logger.info("Booking request %s confirmed by client %s as booking %s", request.id, client_id, booking.id)
    return request, booking


async def expire_stale_requests(session: AsyncSession, now: datetime | None = None) -> int:
    """Periodic sweep: pending requests past expires_at become expired."""
    now = now or utc_naive_now()
    result = await session.execute(
        update(BookingRequest)
        .where(
            BookingRequest.status == RequestStatus.PENDING.value,
            BookingRequest.expires_at <= now,
        )
        .values(status=RequestStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
