"""Ownership and role checks applied at the boundary of every mutating operation.

Rejections are written to the audit trail before the AuthorizationError is raised.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.core.exceptions import AuthorizationError, NotFoundError
from companion_api.models.booking import Booking
from companion_api.models.booking_request import BookingRequest
from companion_api.models.user import Role, User, UserRole
from companion_api.services.audit_service import RequestMeta, record_unauthorized_attempt

logger = logging.getLogger(__name__)


async def has_active_role(session: AsyncSession, user_id: int, role: Role) -> bool:
    result = await session.execute(
        select(UserRole.id).where(
            UserRole.user_id == user_id,
            UserRole.role == role.value,
            UserRole.is_active == True,  # noqa: E712
        )
    )
    return result.first() is not None


async def require_active_provider(session: AsyncSession, provider_id: int) -> User:
    """The booked user must exist and hold an active companion role."""
    user = await session.get(User, provider_id)
    if user is None or not await has_active_role(session, provider_id, Role.COMPANION):
        raise NotFoundError("Companion not found or not approved")
    return user


async def require_companion_role(
    session: AsyncSession, user_id: int, meta: RequestMeta | None = None
) -> None:
    if not await has_active_role(session, user_id, Role.COMPANION):
        logger.warning("Non-companion user %s attempted to access companion endpoint", user_id)
        await record_unauthorized_attempt(session, user_id, user_id, "companion endpoint", meta)
        raise AuthorizationError("Companion role required for this action")


async def ensure_template_owner(
    session: AsyncSession,
    actor_id: int,
    provider_id: int,
    meta: RequestMeta | None = None,
) -> None:
    if actor_id != provider_id:
        await record_unauthorized_attempt(session, provider_id, actor_id, "availability template", meta)
        raise AuthorizationError("You can only modify your own availability")


async def ensure_booking_party(
    session: AsyncSession,
    booking: Booking | BookingRequest,
    actor_id: int,
    meta: RequestMeta | None = None,
) -> None:
    if actor_id not in (booking.client_id, booking.provider_id):
        kind = "booking" if isinstance(booking, Booking) else "booking request"
        await record_unauthorized_attempt(
            session, booking.provider_id, actor_id, f"{kind} {booking.id}", meta
        )
        raise AuthorizationError(f"You are not a party to this {kind}")


async def reject_actor(
    session: AsyncSession,
    booking: Booking | BookingRequest,
    actor_id: int,
    detail: str,
    meta: RequestMeta | None = None,
) -> None:
    """Audit and refuse a party attempting an action reserved for the other party."""
    kind = "booking" if isinstance(booking, Booking) else "booking request"
    await record_unauthorized_attempt(session, booking.provider_id, actor_id, f"{kind} {booking.id}", meta)
    raise AuthorizationError(detail)
