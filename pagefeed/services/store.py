from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from sqlalchemy import select, update, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pagefeed.core.errors import StoreError
from pagefeed.models import Page

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns the poller is allowed to write; slug and registration fields are not among them
MUTABLE_FIELDS = frozenset({
    "last_checked",
    "last_modified",
    "last_error",
    "item_id",
    "http_etag",
    "http_body_hash",
})


class PageStore:
    """CRUD-style access to the pages table.

    Every operation runs in its own session and transaction and is bounded
    by ``timeout_s``. Failures surface as ``StoreError``.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], timeout_s: float):
        self._sessionmaker = sessionmaker
        self._timeout = timeout_s

    async def _bounded(self, what: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise StoreError(f"{what}: timed out after {self._timeout}s") from e
        except SQLAlchemyError as e:
            raise StoreError(f"{what}: {type(e).__name__}: {e}") from e

    async def list_enabled_pages(self) -> list[Page]:
        async def _run() -> list[Page]:
            async with self._sessionmaker() as session:
                q = select(Page).where(Page.enabled == True).order_by(Page.slug.asc())  # noqa: E712
                return list((await session.execute(q)).scalars().all())

        return await self._bounded("list_enabled_pages", _run())

    async def get_page(self, slug: str) -> Page | None:
        async def _run() -> Page | None:
            async with self._sessionmaker() as session:
                return await session.get(Page, slug)

        return await self._bounded(f"get_page {slug}", _run())

    async def list_feed_pages(self) -> list[Page]:
        async def _run() -> list[Page]:
            async with self._sessionmaker() as session:
                q = (
                    select(Page)
                    .where(Page.item_id.is_not(None))
                    .order_by(desc(Page.last_modified), Page.slug.asc())
                )
                return list((await session.execute(q)).scalars().all())

        return await self._bounded("list_feed_pages", _run())

    async def update_page(self, slug: str, **fields: Any) -> None:
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"not writable by the poller: {', '.join(sorted(unknown))}")
        if not fields:
            return

        async def _run() -> None:
            async with self._sessionmaker() as session:
                async with session.begin():
                    res = await session.execute(
                        update(Page).where(Page.slug == slug).values(**fields)
                    )
                    if res.rowcount == 0:
                        raise StoreError(f"update_page {slug}: no such page")

        await self._bounded(f"update_page {slug}", _run())
        logger.debug("updated page %s: %s", slug, ", ".join(sorted(fields)))
