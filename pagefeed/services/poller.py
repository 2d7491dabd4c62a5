from __future__ import annotations

import asyncio
import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pagefeed.core.errors import StoreError
from pagefeed.models import Page
from pagefeed.services.detector import Detection, Verdict, detect_change
from pagefeed.services.fetcher import Fetcher
from pagefeed.services.schedule import DuePage, DueReason, select_due
from pagefeed.services.store import PageStore

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]

@dataclass
class PollStats:
    pages_seen: int = 0
    due: int = 0
    unchanged: int = 0
    changed: int = 0
    failed: int = 0
    store_errors: int = 0
    errors: list[str] = field(default_factory=list)

@dataclass(frozen=True)
class CheckResult:
    slug: str
    verdict: Verdict
    checked_at: dt.datetime
    fields: dict[str, Any]
    recorded: bool
    error: Optional[str] = None
    store_error: bool = False

def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)

def record_fields(page: Page, detection: Detection, now: dt.datetime) -> dict[str, Any]:
    """Columns to write for one attempt. Never partial: one dict, one UPDATE."""
    if detection.verdict is Verdict.FAILED:
        return {"last_checked": now, "last_error": detection.error}

    if detection.verdict is Verdict.CHANGED:
        return {
            "last_checked": now,
            "last_modified": now,
            "last_error": None,
            "item_id": uuid.uuid4(),
            "http_etag": detection.etag.value if detection.etag else None,
            "http_body_hash": detection.fingerprint.digest,
        }

    fields: dict[str, Any] = {"last_checked": now, "last_error": None}
    if detection.baseline:
        fields["http_body_hash"] = detection.fingerprint.digest
        fields["http_etag"] = detection.etag.value if detection.etag else None
    elif detection.fingerprint is not None and detection.etag != page.etag:
        # same content, rotated validator
        fields["http_etag"] = detection.etag.value if detection.etag else None
    elif detection.etag is not None and detection.etag != page.etag:
        # 304 carrying a new validator
        fields["http_etag"] = detection.etag.value
    return fields


class Poller:
    """Ties schedule -> fetch -> detect -> store together for one poll cycle.

    A slug is claimed for the whole attempt, so a page is never fetched by
    two workers at once even if cycles overlap.
    """

    def __init__(self, store: PageStore, fetcher: Fetcher, max_workers: int, clock: Clock = _utc_now):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._store = store
        self._fetcher = fetcher
        self._max_workers = max_workers
        self._clock = clock
        self._in_flight: set[str] = set()

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def _claim(self, slug: str) -> bool:
        if slug in self._in_flight:
            return False
        self._in_flight.add(slug)
        return True

    def _release(self, slug: str) -> None:
        self._in_flight.discard(slug)

    async def run_cycle(self) -> PollStats:
        stats = PollStats()
        try:
            pages = await self._store.list_enabled_pages()
        except StoreError as e:
            logger.error("poll cycle skipped, cannot list pages: %s", e)
            stats.store_errors += 1
            stats.errors.append(f"list pages: {e}")
            return stats

        now = self._clock()
        stats.pages_seen = len(pages)
        due = select_due(pages, now, in_flight=self._in_flight)
        stats.due = len(due)
        if not due:
            logger.debug("poll cycle: %d pages, none due", len(pages))
            return stats

        semaphore = asyncio.Semaphore(self._max_workers)
        results = await asyncio.gather(*(self._run_one(d, semaphore) for d in due))
        for d, result in zip(due, results):
            if result is None:
                continue
            if result.store_error:
                stats.store_errors += 1
                stats.errors.append(f"page {d.page.slug}: {result.error}")
            elif result.verdict is Verdict.CHANGED:
                stats.changed += 1
            elif result.verdict is Verdict.FAILED:
                stats.failed += 1
                stats.errors.append(f"page {d.page.slug}: {result.error}")
            else:
                stats.unchanged += 1

        logger.info(
            "poll cycle: %d pages, %d due, %d changed, %d unchanged, %d failed, %d store errors",
            stats.pages_seen, stats.due, stats.changed, stats.unchanged, stats.failed, stats.store_errors,
        )
        return stats

    async def _run_one(self, due: DuePage, semaphore: asyncio.Semaphore) -> Optional[CheckResult]:
        async with semaphore:
            try:
                return await self.check_page(due.page, due.reason)
            except Exception as e:
                # nothing was written; the page stays due for the next cycle
                logger.exception("unexpected error checking %s", due.page.slug)
                return CheckResult(
                    slug=due.page.slug,
                    verdict=Verdict.FAILED,
                    checked_at=self._clock(),
                    fields={},
                    recorded=False,
                    error=f"{type(e).__name__}: {e}",
                )

    async def check_page(self, page: Page, reason: DueReason | None = None) -> Optional[CheckResult]:
        """Run one attempt for ``page``; None if another worker holds it."""
        if not self._claim(page.slug):
            logger.debug("skipping %s, already in flight", page.slug)
            return None
        try:
            logger.debug("checking %s (%s)", page.slug, reason.value if reason else "manual")
            outcome = await self._fetcher.fetch(page.url, page.etag)
            try:
                detection = detect_change(outcome, page.fingerprint, page.delete_regex, page.content_selector)
            except Exception as e:
                # recorded like a fetch failure so last_checked still advances
                logger.exception("processing error on %s", page.slug)
                detection = Detection(Verdict.FAILED, error=f"processing error: {type(e).__name__}: {e}")
            now = self._clock()
            fields = record_fields(page, detection, now)
            try:
                await self._store.update_page(page.slug, **fields)
            except StoreError as e:
                logger.error("could not record check of %s: %s", page.slug, e)
                return CheckResult(page.slug, detection.verdict, now, fields, recorded=False, error=str(e), store_error=True)

            if detection.verdict is Verdict.CHANGED:
                logger.info("%s changed, item %s", page.slug, fields["item_id"])
            elif detection.verdict is Verdict.FAILED:
                logger.warning("check of %s failed: %s", page.slug, detection.error)
            elif detection.baseline:
                logger.info("%s baseline recorded", page.slug)
            else:
                logger.debug("%s unchanged", page.slug)
            return CheckResult(page.slug, detection.verdict, now, fields, recorded=True, error=detection.error)
        finally:
            self._release(page.slug)
