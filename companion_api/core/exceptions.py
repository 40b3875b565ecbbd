from fastapi import status


class BookingEngineError(Exception):
    """Base for errors the API maps to a client-facing status code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Booking engine error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(BookingEngineError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid booking data"


class ConflictError(BookingEngineError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Time slot is already booked"


class AuthorizationError(BookingEngineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not allowed to act on this resource"


class NotFoundError(BookingEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class IllegalTransitionError(BookingEngineError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Status transition not allowed"


class RateLimitExceededError(BookingEngineError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many requests. Please wait a moment and try again."
