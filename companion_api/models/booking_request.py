from datetime import date, datetime, time
from enum import Enum

from sqlmodel import Field, SQLModel

from companion_api.core.clock import utc_naive_now
from companion_api.models.booking import MeetingType


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class PreferredTime(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    FLEXIBLE = "flexible"


class RequestDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class BookingRequest(SQLModel, table=True):
    """Negotiation record used when no bookable slot fits the client."""

    __tablename__ = "booking_requests"
    id: int | None = Field(default=None, primary_key=True)
    client_id: int = Field(foreign_key="users.id", index=True)
    provider_id: int = Field(foreign_key="users.id", index=True)
    requested_date: date
    preferred_time: str | None = Field(default=None, max_length=20)
    start_time: time | None = None
    end_time: time | None = None
    duration_hours: float
    service_category_id: int | None = Field(default=None, foreign_key="service_categories.id")
    meeting_type: str = Field(default=MeetingType.IN_PERSON.value, max_length=20)
    special_requests: str | None = None
    meeting_location: str | None = Field(default=None, max_length=255)
    status: str = Field(default=RequestStatus.PENDING.value, max_length=20, index=True)
    companion_response: str | None = None
    suggested_date: date | None = None
    suggested_start_time: time | None = None
    suggested_end_time: time | None = None
    booking_id: int | None = Field(default=None, foreign_key="bookings.id")
    expires_at: datetime = Field(index=True)
    responded_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_naive_now)
    updated_at: datetime = Field(default_factory=utc_naive_now)

    @property
    def has_counter_offer(self) -> bool:
        return self.suggested_date is not None and self.suggested_start_time is not None

    @property
    def awaiting_client_confirmation(self) -> bool:
        return self.status == RequestStatus.ACCEPTED and self.has_counter_offer and self.booking_id is None


class BookingRequestCreate(SQLModel):
    requested_date: date
    preferred_time: PreferredTime | None = None
    start_time: time | None = None
    end_time: time | None = None
    duration_hours: float | None = None
    service_category_id: int | None = None
    meeting_type: MeetingType = MeetingType.IN_PERSON
    special_requests: str | None = None
    meeting_location: str | None = None


class CounterOffer(SQLModel):
    suggested_date: date
    suggested_start_time: time
    suggested_end_time: time
