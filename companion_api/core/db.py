from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from companion_api.core.config import settings


def to_async_url(url: str) -> str:
    """Use asyncpg for Postgres URLs; other URLs (e.g. sqlite+aiosqlite in tests) pass through.

    asyncpg does not accept psycopg params like sslmode/channel_binding, so they are
    stripped; SSL is enabled via connect_args.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("postgresql", "postgresql+asyncpg"):
        return url
    query = parse_qs(parsed.query, keep_blank_values=True)
    query.pop("sslmode", None)
    query.pop("channel_binding", None)
    new_query = urlencode(query, doseq=True)
    return urlunparse(("postgresql+asyncpg", parsed.netloc, parsed.path, parsed.params, new_query, parsed.fragment))


async_database_url = to_async_url(settings.database_url)
_is_asyncpg = async_database_url.startswith("postgresql+asyncpg")

engine = create_async_engine(
    async_database_url,
    echo=settings.env == "development",
    pool_pre_ping=True,
    **({"pool_size": 5, "max_overflow": 10} if _is_asyncpg else {}),
    connect_args={"ssl": True} if _is_asyncpg and settings.database_ssl else {},
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
