from datetime import date, datetime, time
from enum import Enum

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from companion_api.core.clock import utc_naive_now


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def for_date(cls, d: date) -> "Weekday":
        return WEEKDAYS[d.weekday()]


# Indexed like date.weekday(): Monday == 0
WEEKDAYS: list[Weekday] = list(Weekday)


class AvailabilityWindow(SQLModel, table=True):
    """One contiguous window in a provider's recurring weekly template."""

    __tablename__ = "availability_windows"
    __table_args__ = (
        UniqueConstraint("provider_id", "day_of_week", "start_time", name="uq_availability_provider_day_start"),
    )
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(foreign_key="users.id", index=True)
    day_of_week: str = Field(max_length=10, index=True)
    start_time: time
    end_time: time
    is_available: bool = True
    services: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utc_naive_now)


class AvailabilityWindowCreate(SQLModel):
    day_of_week: Weekday
    start_time: time
    end_time: time
    is_available: bool = True
    services: list[str] = []
