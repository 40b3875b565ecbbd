import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.api.deps import companion_rate_limit, get_current_companion, get_current_user, get_request_meta
from companion_api.api.schemas.availability import (
    CalendarDay,
    CalendarResponse,
    DailySlotsResponse,
    SetAvailabilityRequest,
    SlotPublic,
    WeeklyResponse,
    WeeklySummary,
    WindowPublic,
)
from companion_api.core.db import get_session
from companion_api.models.availability import AvailabilityWindow, AvailabilityWindowCreate, Weekday
from companion_api.models.user import User
from companion_api.services.audit_service import RequestMeta
from companion_api.services.availability_service import get_windows, set_weekly_template
from companion_api.services.ownership import ensure_template_owner
from companion_api.services.slot_service import (
    Slot,
    generate_daily_slots,
    generate_range_summary,
    generate_weekly_pattern,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/booking", tags=["availability"], dependencies=[Depends(get_current_user)])


def _window_public(w: AvailabilityWindow) -> WindowPublic:
    return WindowPublic(
        day_of_week=w.day_of_week,
        start_time=w.start_time,
        end_time=w.end_time,
        is_available=w.is_available,
        services=list(w.services or []),
    )


def _slot_public(s: Slot) -> SlotPublic:
    return SlotPublic(start_time=s.start, end_time=s.end, status=s.status, services=s.services)


@router.post("/availability", response_model=list[WindowPublic])
async def set_availability(
    body: SetAvailabilityRequest,
    _: None = Depends(companion_rate_limit),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_companion),
    meta: RequestMeta = Depends(get_request_meta),
) -> list[WindowPublic]:
    """Replace the caller's weekly windows for the affected weekdays."""
    provider_id = body.companion_id if body.companion_id else current_user.id
    await ensure_template_owner(session, current_user.id, provider_id, meta)
    windows = [AvailabilityWindowCreate(**w.model_dump()) for w in body.availability]
    created = await set_weekly_template(
        session,
        provider_id,
        windows,
        actor_id=current_user.id,
        replace_days=body.replace_days,
        meta=meta,
    )
    return [_window_public(w) for w in created]


@router.get("/availability/{companion_id}", response_model=list[WindowPublic])
async def get_companion_availability(
    companion_id: int,
    date_param: date | None = Query(None, alias="date"),
    session: AsyncSession = Depends(get_session),
) -> list[WindowPublic]:
    day = Weekday.for_date(date_param) if date_param else None
    return [_window_public(w) for w in await get_windows(session, companion_id, day=day)]


@router.get("/availability/{companion_id}/slots", response_model=DailySlotsResponse)
async def get_available_time_slots(
    companion_id: int,
    date_param: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
) -> DailySlotsResponse:
    slots = await generate_daily_slots(session, companion_id, date_param)
    return DailySlotsResponse(
        date=date_param,
        day_of_week=Weekday.for_date(date_param),
        slots=[_slot_public(s) for s in slots],
    )


@router.get("/availability/{companion_id}/weekly", response_model=WeeklyResponse)
async def get_companion_weekly_availability(
    companion_id: int,
    session: AsyncSession = Depends(get_session),
) -> WeeklyResponse:
    pattern = await generate_weekly_pattern(session, companion_id)
    return WeeklyResponse(
        weekly_pattern={
            day.value: [_window_public(w) for w in windows] for day, windows in pattern.days.items()
        },
        summary=WeeklySummary(
            total_slots_per_week=pattern.total_slots_per_week,
            days_available=len(pattern.available_days),
            available_days=pattern.available_days,
        ),
    )


@router.get("/availability/{companion_id}/calendar", response_model=CalendarResponse)
async def get_companion_availability_for_date_range(
    companion_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    session: AsyncSession = Depends(get_session),
) -> CalendarResponse:
    summary = await generate_range_summary(session, companion_id, start_date, end_date)
    return CalendarResponse(
        availability_calendar={
            d.isoformat(): CalendarDay(
                day_of_week=day.day_of_week,
                total_slots=day.total_slots,
                bookable_count=day.bookable_count,
                booked_count=day.booked_count,
                is_available=day.is_available,
                slots=[_slot_public(s) for s in day.slots],
            )
            for d, day in summary.items()
        }
    )
