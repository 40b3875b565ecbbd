from datetime import date, datetime, time
from enum import Enum

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from companion_api.core.clock import utc_naive_now


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class MeetingType(str, Enum):
    IN_PERSON = "in_person"
    VIRTUAL = "virtual"


# Statuses that hold a slot on the provider's schedule
ACTIVE_STATUSES: tuple[str, ...] = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)

_ACTIVE_SLOT_PREDICATE = text("status IN ('pending', 'confirmed')")


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # Backstop for the check-then-insert in create_booking: at most one active
        # booking may start at a given provider/date/time.
        Index(
            "uq_bookings_active_slot",
            "provider_id",
            "booking_date",
            "start_time",
            unique=True,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
        ),
        Index("ix_bookings_provider_date", "provider_id", "booking_date"),
    )
    id: int | None = Field(default=None, primary_key=True)
    client_id: int = Field(foreign_key="users.id", index=True)
    provider_id: int = Field(foreign_key="users.id", index=True)
    booking_date: date
    start_time: time
    end_time: time
    duration_hours: float
    total_amount: float
    status: str = Field(default=BookingStatus.PENDING.value, max_length=20, index=True)
    payment_status: str = Field(default=PaymentStatus.UNPAID.value, max_length=20)
    payment_method: str | None = Field(default=None, max_length=50)
    payment_intent_id: str | None = Field(default=None, max_length=255)
    paid_at: datetime | None = None
    meeting_type: str = Field(default=MeetingType.IN_PERSON.value, max_length=20)
    service_category_id: int | None = Field(default=None, foreign_key="service_categories.id")
    special_requests: str | None = None
    meeting_location: str | None = Field(default=None, max_length=255)
    booking_request_id: int | None = Field(default=None, index=True)
    cancellation_reason: str | None = None
    created_at: datetime = Field(default_factory=utc_naive_now)
    updated_at: datetime = Field(default_factory=utc_naive_now)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.booking_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.booking_date, self.end_time)


class BookingCreate(SQLModel):
    """Everything about a new booking except who books whom and when."""

    meeting_type: MeetingType = MeetingType.IN_PERSON
    service_category_id: int | None = None
    special_requests: str | None = None
    meeting_location: str | None = None
    booking_request_id: int | None = None
