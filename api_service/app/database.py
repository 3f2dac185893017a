"""SQLAlchemy async engine, session, and dependency."""

from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import NullPool

from app.config import get_settings
from app.errors import Conflict


settings = get_settings()


def _engine_options() -> dict:
    # aiosqlite connections are bound to the loop that opened them
    if settings.is_sqlite:
        return {"poolclass": NullPool, "echo": False}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": False,
    }


engine = create_async_engine(settings.database_dsn, **_engine_options())

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def flush_or_conflict(session: AsyncSession) -> None:
    """Flush pending writes; constraint or version clashes become Conflict."""
    try:
        await session.flush()
    except (IntegrityError, StaleDataError) as exc:
        await session.rollback()
        raise Conflict("Shelf was modified concurrently, retry with fresh state") from exc


async def commit_or_conflict(session: AsyncSession) -> None:
    try:
        await session.commit()
    except (IntegrityError, StaleDataError) as exc:
        await session.rollback()
        raise Conflict("Shelf was modified concurrently, retry with fresh state") from exc


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One request, one transaction: commit on success, roll back on any error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
