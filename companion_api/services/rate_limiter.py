"""Sliding-window rate limiter with pluggable storage.

The database store shares counts across service instances; the memory store
is for tests and single-process tools.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.core.clock import Clock, utc_naive_now
from companion_api.core.exceptions import RateLimitExceededError
from companion_api.models.rate_limit import RateLimitHit

logger = logging.getLogger(__name__)


class RateLimitStore(Protocol):
    async def count_since(self, key: str, since: datetime) -> int: ...

    async def add(self, key: str, at: datetime) -> None: ...

    async def purge_before(self, cutoff: datetime) -> int: ...


class MemoryRateLimitStore:
    def __init__(self) -> None:
        self._hits: dict[str, list[datetime]] = defaultdict(list)

    async def count_since(self, key: str, since: datetime) -> int:
        return sum(1 for t in self._hits.get(key, []) if t > since)

    async def add(self, key: str, at: datetime) -> None:
        self._hits[key].append(at)

    async def purge_before(self, cutoff: datetime) -> int:
        removed = 0
        for key in list(self._hits):
            kept = [t for t in self._hits[key] if t > cutoff]
            removed += len(self._hits[key]) - len(kept)
            if kept:
                self._hits[key] = kept
            else:
                del self._hits[key]
        return removed


class DatabaseRateLimitStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def count_since(self, key: str, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count(RateLimitHit.id)).where(
                RateLimitHit.key == key,
                RateLimitHit.created_at > since,
            )
        )
        return int(result.scalar_one())

    async def add(self, key: str, at: datetime) -> None:
        self.session.add(RateLimitHit(key=key, created_at=at))
        await self.session.flush()

    async def purge_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(delete(RateLimitHit).where(RateLimitHit.created_at <= cutoff))
        return result.rowcount or 0


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        max_requests: int,
        window_seconds: int,
        clock: Clock = utc_naive_now,
    ) -> None:
        self.store = store
        self.max_requests = max_requests
        self.window = timedelta(seconds=window_seconds)
        self.clock = clock

    async def hit(self, key: str) -> int:
        """Count one request for key. Returns requests remaining; raises when over the limit."""
        now = self.clock()
        used = await self.store.count_since(key, now - self.window)
        if used >= self.max_requests:
            logger.warning("Rate limit exceeded for %s", key)
            raise RateLimitExceededError()
        await self.store.add(key, now)
        return self.max_requests - used - 1

    async def purge(self) -> int:
        return await self.store.purge_before(self.clock() - self.window)
