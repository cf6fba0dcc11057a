# @TASK P0-T0.3 - Async engine, session factory and request session dependency

from collections.abc import AsyncGenerator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from universo.config import get_settings

settings = get_settings()


def _engine_options(url: str) -> dict:
    # aiosqlite connections are not shared across threads by the async driver.
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_async_engine(
    settings.async_database_url,
    echo=settings.DATABASE_ECHO,
    **_engine_options(settings.async_database_url),
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base shared by every table.

    Indexes and foreign keys get deterministic names; unique and check
    constraints are named explicitly on the models.
    """

    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(table_name)s_%(column_0_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session.

    Writes of a request commit together when the handler returns; any
    exception rolls them all back, including the activity log entry.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
