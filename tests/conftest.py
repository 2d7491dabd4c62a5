from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional

import pytest

from pagefeed.core.db import init_db, make_engine, make_sessionmaker
from pagefeed.models import Page, ETag
from pagefeed.services.fetcher import FetchOutcome
from pagefeed.services.store import PageStore

T0 = dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.timezone.utc)


class FakeClock:
    def __init__(self, now: dt.datetime = T0):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, delta: dt.timedelta) -> None:
        self.now += delta


class ScriptedFetcher:
    """Stands in for ``Fetcher``: returns queued outcomes per URL and records calls."""

    def __init__(self, outcomes: Optional[dict[str, list[FetchOutcome]]] = None, delay: float = 0):
        self.outcomes = outcomes or {}
        self.calls: list[tuple[str, Optional[ETag]]] = []
        self.delay = delay
        self.active = 0
        self.max_active = 0

    def queue(self, url: str, *outcomes: FetchOutcome) -> None:
        self.outcomes.setdefault(url, []).extend(outcomes)

    async def fetch(self, url: str, etag: Optional[ETag]) -> FetchOutcome:
        self.calls.append((url, etag))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self.outcomes[url].pop(0)
        finally:
            self.active -= 1


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'pages.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return make_sessionmaker(engine)


@pytest.fixture()
def store(sessionmaker) -> PageStore:
    return PageStore(sessionmaker, timeout_s=5)


@pytest.fixture()
def add_page(sessionmaker):
    async def _add(slug: str, **kw) -> Page:
        kw.setdefault("name", slug.replace("-", " ").title())
        kw.setdefault("url", f"https://example.com/{slug}")
        page = Page(slug=slug, **kw)
        async with sessionmaker() as session:
            session.add(page)
            await session.commit()
        return page

    return _add


class StalledSession:
    """Session context that never finishes opening, like a store that stopped answering."""

    async def __aenter__(self):
        await asyncio.sleep(60)

    async def __aexit__(self, *exc):
        return False


def stalled_sessionmaker() -> StalledSession:
    return StalledSession()
