from companion_api.models.user import Role, User, UserRole
from companion_api.models.service_category import ServiceCategory
from companion_api.models.availability import AvailabilityWindow, AvailabilityWindowCreate, Weekday
from companion_api.models.booking import (
    Booking,
    BookingCreate,
    BookingStatus,
    MeetingType,
    PaymentStatus,
)
from companion_api.models.booking_request import (
    BookingRequest,
    BookingRequestCreate,
    CounterOffer,
    PreferredTime,
    RequestDecision,
    RequestStatus,
)
from companion_api.models.audit_log import AuditAction, AvailabilityAuditLog
from companion_api.models.rate_limit import RateLimitHit

__all__ = [
    "Role",
    "User",
    "UserRole",
    "ServiceCategory",
    "AvailabilityWindow",
    "AvailabilityWindowCreate",
    "Weekday",
    "Booking",
    "BookingCreate",
    "BookingStatus",
    "MeetingType",
    "PaymentStatus",
    "BookingRequest",
    "BookingRequestCreate",
    "CounterOffer",
    "PreferredTime",
    "RequestDecision",
    "RequestStatus",
    "AuditAction",
    "AvailabilityAuditLog",
    "RateLimitHit",
]
