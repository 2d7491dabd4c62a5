from __future__ import annotations

import datetime as dt
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pagefeed.core.config import Settings, settings
from pagefeed.core.db import get_sessionmaker
from pagefeed.services.fetcher import Fetcher
from pagefeed.services.poller import Poller, PollStats
from pagefeed.services.store import PageStore

scheduler = AsyncIOScheduler(timezone=dt.timezone.utc)

_poller: Poller | None = None

def build_poller(sessionmaker: async_sessionmaker[AsyncSession], cfg: Settings) -> Poller:
    store = PageStore(sessionmaker, timeout_s=cfg.store_timeout_seconds)
    fetcher = Fetcher(cfg.user_agent, cfg.request_timeout_seconds, cfg.max_body_bytes)
    return Poller(store, fetcher, max_workers=cfg.max_workers)

def get_poller() -> Poller:
    # One poller per process so the in-flight set is shared by every cycle
    global _poller
    if _poller is None:
        _poller = build_poller(get_sessionmaker(), settings)
    return _poller

async def run_poll_cycle() -> PollStats:
    return await get_poller().run_cycle()

def start_scheduler() -> None:
    scheduler.add_job(
        run_poll_cycle,
        IntervalTrigger(seconds=settings.poll_interval_seconds),
        id="poll_cycle",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        next_run_time=dt.datetime.now(dt.timezone.utc),
    )
    scheduler.start()

def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
