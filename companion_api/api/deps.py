from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.core.config import settings
from companion_api.core.db import get_session
from companion_api.core.security import decode_access_token
from companion_api.models.user import User
from companion_api.services.audit_service import RequestMeta
from companion_api.services.ownership import require_companion_role
from companion_api.services.rate_limiter import DatabaseRateLimitStore, RateLimiter

security = HTTPBearer(auto_error=False)


def get_request_meta(request: Request) -> RequestMeta:
    """Client metadata for audit entries."""
    return RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        endpoint=request.url.path,
    )


async def get_current_user(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = decode_access_token(credentials.credentials)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        uid = int(user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    result = await session.execute(select(User).where(User.id == uid))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def companion_rate_limit(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> None:
    limiter = RateLimiter(
        DatabaseRateLimitStore(session),
        max_requests=settings.companion_rate_limit_max_requests,
        window_seconds=settings.companion_rate_limit_window_seconds,
    )
    await limiter.hit(f"companion_{current_user.id}")


async def get_current_companion(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    meta: RequestMeta = Depends(get_request_meta),
) -> User:
    """Current user, required to hold an active companion role."""
    await require_companion_role(session, current_user.id, meta)
    return current_user
