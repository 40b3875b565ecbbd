from datetime import date, time

from companion_api.api.schemas.common import CamelModel
from companion_api.models.availability import Weekday
from companion_api.services.slot_service import SlotStatus


class WindowIn(CamelModel):
    day_of_week: Weekday
    start_time: time
    end_time: time
    is_available: bool = True
    services: list[str] = []


class SetAvailabilityRequest(CamelModel):
    availability: list[WindowIn]
    # Weekdays to replace; defaults to the weekdays present in availability
    replace_days: list[Weekday] | None = None
    companion_id: int | None = None


class WindowPublic(CamelModel):
    day_of_week: Weekday
    start_time: time
    end_time: time
    is_available: bool
    services: list[str]


class SlotPublic(CamelModel):
    start_time: time
    end_time: time
    status: SlotStatus
    services: list[str]


class DailySlotsResponse(CamelModel):
    date: date
    day_of_week: Weekday
    slots: list[SlotPublic]


class CalendarDay(CamelModel):
    day_of_week: Weekday
    total_slots: int
    bookable_count: int
    booked_count: int
    is_available: bool
    slots: list[SlotPublic]


class CalendarResponse(CamelModel):
    availability_calendar: dict[str, CalendarDay]


class WeeklySummary(CamelModel):
    total_slots_per_week: int
    days_available: int
    available_days: list[Weekday]


class WeeklyResponse(CamelModel):
    weekly_pattern: dict[str, list[WindowPublic]]
    summary: WeeklySummary
