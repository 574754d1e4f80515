from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from teamauth.core.config import settings


def _engine_options(database_url: str) -> dict:
    """
    Connection pooling options for server databases.
    SQLite (tests, local demos) uses its own pool and rejects these.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    # - pool_pre_ping: verify connections are alive before use
    # - pool_recycle: recycle connections after 1 hour to avoid DB-side timeouts
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.SQLALCHEMY_ECHO,
    **_engine_options(settings.DATABASE_URL),
)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def check_db_connection() -> bool:
    """
    Verify database connectivity. Used by health checks.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


async def create_tables() -> None:
    from teamauth.db.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
