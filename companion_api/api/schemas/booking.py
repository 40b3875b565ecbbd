from datetime import date, datetime, time

from companion_api.api.schemas.common import CamelModel
from companion_api.models.booking import Booking, BookingStatus, MeetingType, PaymentStatus


class CreateBookingRequest(CamelModel):
    companion_id: int
    booking_date: date
    start_time: time
    end_time: time
    meeting_type: MeetingType = MeetingType.IN_PERSON
    service_category_id: int | None = None
    special_requests: str | None = None
    meeting_location: str | None = None


class BookingStatusUpdate(CamelModel):
    status: BookingStatus
    reason: str | None = None


class PaymentStatusUpdate(CamelModel):
    payment_status: PaymentStatus
    payment_method: str | None = None
    payment_intent_id: str | None = None


class BookingPublic(CamelModel):
    id: int
    client_id: int
    companion_id: int
    booking_date: date
    start_time: time
    end_time: time
    duration_hours: float
    total_amount: float
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: str | None = None
    payment_intent_id: str | None = None
    paid_at: datetime | None = None
    meeting_type: MeetingType
    service_category_id: int | None = None
    special_requests: str | None = None
    meeting_location: str | None = None
    booking_request_id: int | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_booking(cls, b: Booking) -> "BookingPublic":
        return cls(
            id=b.id,
            client_id=b.client_id,
            companion_id=b.provider_id,
            booking_date=b.booking_date,
            start_time=b.start_time,
            end_time=b.end_time,
            duration_hours=b.duration_hours,
            total_amount=b.total_amount,
            status=b.status,
            payment_status=b.payment_status,
            payment_method=b.payment_method,
            payment_intent_id=b.payment_intent_id,
            paid_at=b.paid_at,
            meeting_type=b.meeting_type,
            service_category_id=b.service_category_id,
            special_requests=b.special_requests,
            meeting_location=b.meeting_location,
            booking_request_id=b.booking_request_id,
            cancellation_reason=b.cancellation_reason,
            created_at=b.created_at,
            updated_at=b.updated_at,
        )
