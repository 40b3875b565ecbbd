from datetime import date, datetime, time
from typing import Literal

from pydantic import model_validator

from companion_api.api.schemas.booking import BookingPublic
from companion_api.api.schemas.common import CamelModel
from companion_api.models.booking import MeetingType
from companion_api.models.booking_request import BookingRequest, PreferredTime, RequestStatus


class CreateBookingRequestBody(CamelModel):
    companion_id: int
    requested_date: date
    preferred_time: PreferredTime | None = None
    start_time: time | None = None
    end_time: time | None = None
    duration_hours: float | None = None
    service_category_id: int | None = None
    meeting_type: MeetingType = MeetingType.IN_PERSON
    special_requests: str | None = None
    meeting_location: str | None = None


class RespondToRequestBody(CamelModel):
    status: Literal["accepted", "rejected"]
    companion_response: str | None = None
    suggested_date: date | None = None
    suggested_start_time: time | None = None
    suggested_end_time: time | None = None

    @model_validator(mode="after")
    def _counter_offer_complete(self) -> "RespondToRequestBody":
        given = [self.suggested_date, self.suggested_start_time, self.suggested_end_time]
        if any(v is not None for v in given) and not all(v is not None for v in given):
            raise ValueError("suggestedDate, suggestedStartTime and suggestedEndTime must be given together")
        if self.status == "rejected" and self.suggested_date is not None:
            raise ValueError("A suggested time can only accompany an acceptance")
        return self

    @property
    def has_counter_offer(self) -> bool:
        return self.suggested_date is not None


class BookingRequestPublic(CamelModel):
    id: int
    client_id: int
    companion_id: int
    requested_date: date
    preferred_time: PreferredTime | None = None
    start_time: time | None = None
    end_time: time | None = None
    duration_hours: float
    service_category_id: int | None = None
    meeting_type: MeetingType
    special_requests: str | None = None
    meeting_location: str | None = None
    status: RequestStatus
    companion_response: str | None = None
    suggested_date: date | None = None
    suggested_start_time: time | None = None
    suggested_end_time: time | None = None
    awaiting_client_confirmation: bool
    booking_id: int | None = None
    expires_at: datetime
    responded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_request(cls, r: BookingRequest) -> "BookingRequestPublic":
        return cls(
            id=r.id,
            client_id=r.client_id,
            companion_id=r.provider_id,
            requested_date=r.requested_date,
            preferred_time=r.preferred_time,
            start_time=r.start_time,
            end_time=r.end_time,
            duration_hours=r.duration_hours,
            service_category_id=r.service_category_id,
            meeting_type=r.meeting_type,
            special_requests=r.special_requests,
            meeting_location=r.meeting_location,
            status=r.status,
            companion_response=r.companion_response,
            suggested_date=r.suggested_date,
            suggested_start_time=r.suggested_start_time,
            suggested_end_time=r.suggested_end_time,
            awaiting_client_confirmation=r.awaiting_client_confirmation,
            booking_id=r.booking_id,
            expires_at=r.expires_at,
            responded_at=r.responded_at,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )


class RequestResponse(CamelModel):
    request: BookingRequestPublic
    booking: BookingPublic | None = None
