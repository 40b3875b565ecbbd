import logging
from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.api.deps import get_current_companion, get_current_user, get_request_meta
from companion_api.api.schemas.booking import (
    BookingPublic,
    BookingStatusUpdate,
    CreateBookingRequest,
    PaymentStatusUpdate,
)
from companion_api.core.db import get_session
from companion_api.models.booking import BookingCreate, BookingStatus
from companion_api.models.user import Role, User
from companion_api.services.audit_service import RequestMeta
from companion_api.services.booking_service import (
    create_booking,
    get_booking_for_actor,
    list_bookings_for_user,
    list_pending_for_provider,
    list_provider_bookings_in_range,
    transition_booking,
    update_payment_status,
)
from companion_api.services.notification_service import NotificationEvent, queue_notification

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/booking", tags=["bookings"])

_STATUS_EVENTS = {
    BookingStatus.CONFIRMED: NotificationEvent.BOOKING_CONFIRMED,
    BookingStatus.CANCELLED: NotificationEvent.BOOKING_CANCELLED,
}


@router.post("/create", response_model=BookingPublic, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    body: CreateBookingRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> BookingPublic:
    booking = await create_booking(
        session,
        client_id=current_user.id,
        provider_id=body.companion_id,
        booking_date=body.booking_date,
        start_time=body.start_time,
        end_time=body.end_time,
        data=BookingCreate(
            meeting_type=body.meeting_type,
            service_category_id=body.service_category_id,
            special_requests=body.special_requests,
            meeting_location=body.meeting_location,
        ),
    )
    await queue_notification(
        background_tasks,
        session,
        booking.provider_id,
        NotificationEvent.BOOKING_CREATED,
        booking.booking_date,
        booking.start_time,
        booking.end_time,
        note=booking.special_requests,
    )
    return BookingPublic.from_booking(booking)


@router.get("/my-bookings", response_model=list[BookingPublic])
async def list_my_bookings(
    role: Role | None = Query(None),
    status_filter: BookingStatus | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[BookingPublic]:
    bookings = await list_bookings_for_user(
        session, current_user.id, role=role, status=status_filter, limit=limit, offset=offset
    )
    return [BookingPublic.from_booking(b) for b in bookings]


@router.get("/companion/pending", response_model=list[BookingPublic])
async def list_pending_bookings_for_companion(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_companion),
) -> list[BookingPublic]:
    return [BookingPublic.from_booking(b) for b in await list_pending_for_provider(session, current_user.id)]


@router.get("/bookings/{companion_id}/date-range", response_model=list[BookingPublic])
async def get_companion_bookings_by_date_range(
    companion_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[BookingPublic]:
    bookings = await list_provider_bookings_in_range(session, companion_id, start_date, end_date)
    return [BookingPublic.from_booking(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingPublic)
async def get_booking_by_id(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    meta: RequestMeta = Depends(get_request_meta),
) -> BookingPublic:
    booking = await get_booking_for_actor(session, booking_id, current_user.id, meta)
    return BookingPublic.from_booking(booking)


@router.put("/{booking_id}/status", response_model=BookingPublic)
async def update_booking_status(
    booking_id: int,
    body: BookingStatusUpdate,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    meta: RequestMeta = Depends(get_request_meta),
) -> BookingPublic:
    booking = await transition_booking(
        session, booking_id, current_user.id, body.status, reason=body.reason, meta=meta
    )
    event = _STATUS_EVENTS.get(body.status)
    if event is not None:
        other = booking.client_id if current_user.id == booking.provider_id else booking.provider_id
        await queue_notification(
            background_tasks,
            session,
            other,
            event,
            booking.booking_date,
            booking.start_time,
            booking.end_time,
            note=body.reason,
        )
    return BookingPublic.from_booking(booking)


@router.put("/{booking_id}/payment-status", response_model=BookingPublic)
async def update_booking_payment_status(
    booking_id: int,
    body: PaymentStatusUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    meta: RequestMeta = Depends(get_request_meta),
) -> BookingPublic:
    booking = await update_payment_status(
        session,
        booking_id,
        current_user.id,
        body.payment_status,
        payment_method=body.payment_method,
        payment_intent_id=body.payment_intent_id,
        meta=meta,
    )
    return BookingPublic.from_booking(booking)
