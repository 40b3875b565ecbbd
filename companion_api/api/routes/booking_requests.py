import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.api.deps import get_current_companion, get_current_user, get_request_meta
from companion_api.api.schemas.booking import BookingPublic
from companion_api.api.schemas.booking_request import (
    BookingRequestPublic,
    CreateBookingRequestBody,
    RequestResponse,
    RespondToRequestBody,
)
from companion_api.core.db import get_session
from companion_api.models.booking_request import (
    BookingRequest,
    BookingRequestCreate,
    CounterOffer,
    RequestDecision,
    RequestStatus,
)
from companion_api.models.user import Role, User
from companion_api.services.audit_service import RequestMeta
from companion_api.services.negotiation_service import (
    confirm_counter_offer,
    create_request,
    get_request_for_actor,
    list_requests_for_user,
    respond_to_request,
)
from companion_api.services.notification_service import NotificationEvent, queue_notification

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/booking/requests", tags=["booking-requests"])


async def _notify_client(
    background_tasks: BackgroundTasks,
    session: AsyncSession,
    request: BookingRequest,
    event: NotificationEvent,
) -> None:
    if request.suggested_date is not None:
        on_date, start, end = request.suggested_date, request.suggested_start_time, request.suggested_end_time
    else:
        on_date, start, end = request.requested_date, request.start_time, request.end_time
    await queue_notification(
        background_tasks, session, request.client_id, event, on_date, start, end, note=request.companion_response
    )


@router.post("/create", response_model=BookingRequestPublic, status_code=status.HTTP_201_CREATED)
async def create_booking_request(
    body: CreateBookingRequestBody,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> BookingRequestPublic:
    """Ask a companion for a time outside their bookable slots."""
    request = await create_request(
        session,
        client_id=current_user.id,
        provider_id=body.companion_id,
        data=BookingRequestCreate(**body.model_dump(exclude={"companion_id"})),
    )
    await queue_notification(
        background_tasks,
        session,
        request.provider_id,
        NotificationEvent.REQUEST_CREATED,
        request.requested_date,
        request.start_time,
        request.end_time,
        note=request.special_requests,
    )
    return BookingRequestPublic.from_request(request)


@router.get("", response_model=list[BookingRequestPublic])
async def list_booking_requests(
    role: Role | None = Query(None),
    status_filter: RequestStatus | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[BookingRequestPublic]:
    requests = await list_requests_for_user(session, current_user.id, role=role, status=status_filter)
    return [BookingRequestPublic.from_request(r) for r in requests]


@router.get("/{request_id}", response_model=BookingRequestPublic)
async def get_booking_request(
    request_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    meta: RequestMeta = Depends(get_request_meta),
) -> BookingRequestPublic:
    request = await get_request_for_actor(session, request_id, current_user.id, meta=meta)
    return BookingRequestPublic.from_request(request)


@router.put("/{request_id}/status", response_model=RequestResponse)
async def respond_to_booking_request(
    request_id: int,
    body: RespondToRequestBody,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_companion),
    meta: RequestMeta = Depends(get_request_meta),
) -> RequestResponse:
    """Accept (optionally with a suggested time) or reject a pending request."""
    decision = RequestDecision.ACCEPT if body.status == "accepted" else RequestDecision.REJECT
    counter_offer = None
    if body.has_counter_offer:
        counter_offer = CounterOffer(
            suggested_date=body.suggested_date,
            suggested_start_time=body.suggested_start_time,
            suggested_end_time=body.suggested_end_time,
        )
    request, booking = await respond_to_request(
        session,
        request_id,
        current_user.id,
        decision,
        counter_offer=counter_offer,
        reason=body.companion_response,
        meta=meta,
    )
    event = NotificationEvent.REQUEST_ACCEPTED if decision == RequestDecision.ACCEPT else NotificationEvent.REQUEST_REJECTED
    await _notify_client(background_tasks, session, request, event)
    return RequestResponse(
        request=BookingRequestPublic.from_request(request),
        booking=BookingPublic.from_booking(booking) if booking else None,
    )


@router.put("/{request_id}/confirm", response_model=RequestResponse)
async def confirm_suggested_time(
    request_id: int,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    meta: RequestMeta = Depends(get_request_meta),
) -> RequestResponse:
    """Client books the time the companion suggested."""
    request, booking = await confirm_counter_offer(session, request_id, current_user.id, meta=meta)
    await queue_notification(
        background_tasks,
        session,
        booking.provider_id,
        NotificationEvent.BOOKING_CONFIRMED,
        booking.booking_date,
        booking.start_time,
        booking.end_time,
    )
    return RequestResponse(
        request=BookingRequestPublic.from_request(request),
        booking=BookingPublic.from_booking(booking),
    )
