from __future__ import annotations

import datetime as dt

from sqlalchemy import DateTime
from sqlalchemy.exc import ArgumentError, InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from pagefeed.core.config import settings
from pagefeed.core.errors import ConfigError


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    sqlite drops tzinfo on the way out, so values are normalised to UTC
    before binding and UTC is re-attached to naive results.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a timezone-aware column")
        return value.astimezone(dt.timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value.astimezone(dt.timezone.utc)


def make_engine(url: str) -> AsyncEngine:
    try:
        return create_async_engine(url, echo=False, future=True)
    except (ArgumentError, InvalidRequestError) as e:
        raise ConfigError(f"unusable database url {url!r}: {e}") from e


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


_engine: AsyncEngine | None = None
_session_local: async_sessionmaker[AsyncSession] | None = None

def get_engine() -> AsyncEngine:
    # built on first use, not at import
    global _engine
    if _engine is None:
        _engine = make_engine(settings.database_url)
    return _engine

def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _session_local
    if _session_local is None:
        _session_local = make_sessionmaker(get_engine())
    return _session_local

class Base(DeclarativeBase):
    pass

async def init_db(bind: AsyncEngine) -> None:
    # Create tables (no migration tool; rows are inserted by the operator)
    import pagefeed.models  # noqa: F401  registers the mappers

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
