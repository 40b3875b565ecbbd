import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.models.audit_log import AuditAction, AvailabilityAuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Client metadata recorded alongside audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None
    endpoint: str | None = None


async def append_entry(
    session: AsyncSession,
    provider_id: int,
    action: AuditAction,
    actor_id: int | None,
    old_data: Any = None,
    new_data: Any = None,
    meta: RequestMeta | None = None,
) -> AvailabilityAuditLog:
    meta = meta or RequestMeta()
    entry = AvailabilityAuditLog(
        provider_id=provider_id,
        action=action.value,
        old_data=old_data,
        new_data=new_data,
        actor_id=actor_id,
        ip_address=meta.ip_address,
        user_agent=(meta.user_agent or "Unknown")[:500],
    )
    session.add(entry)
    await session.flush()
    return entry


async def record_template_change(
    session: AsyncSession,
    provider_id: int,
    actor_id: int,
    old_windows: list[dict],
    new_windows: list[dict],
    meta: RequestMeta | None = None,
) -> AvailabilityAuditLog:
    return await append_entry(
        session,
        provider_id,
        AuditAction.TEMPLATE_REPLACED,
        actor_id,
        old_data=old_windows,
        new_data=new_windows,
        meta=meta,
    )


async def record_unauthorized_attempt(
    session: AsyncSession,
    provider_id: int,
    actor_id: int | None,
    target: str,
    meta: RequestMeta | None = None,
) -> AvailabilityAuditLog:
    """Log and commit a rejected access attempt.

    Commits immediately: the caller is about to raise, and the request's
    transaction will be rolled back.
    """
    logger.error("User %s attempted to act on %s owned by provider %s", actor_id, target, provider_id)
    entry = await append_entry(
        session,
        provider_id,
        AuditAction.UNAUTHORIZED_ACCESS_ATTEMPT,
        actor_id,
        new_data={
            "attempted_by": actor_id,
            "target": target,
            "endpoint": meta.endpoint if meta else None,
        },
        meta=meta,
    )
    await session.commit()
    return entry


async def list_entries(
    session: AsyncSession, provider_id: int, action: AuditAction | None = None
) -> list[AvailabilityAuditLog]:
    q = (
        select(AvailabilityAuditLog)
        .where(AvailabilityAuditLog.provider_id == provider_id)
        .order_by(AvailabilityAuditLog.created_at, AvailabilityAuditLog.id)
    )
    if action is not None:
        q = q.where(AvailabilityAuditLog.action == action.value)
    result = await session.execute(q)
    return list(result.scalars().all())
