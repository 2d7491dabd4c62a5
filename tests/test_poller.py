from __future__ import annotations

import asyncio
import datetime as dt

from pagefeed.core.errors import StoreError
from pagefeed.models import ETag
from pagefeed.services.detector import Verdict, fingerprint
from pagefeed.services.fetcher import Fetched, FetchFailed, FailureKind, NotModified
from pagefeed.services.poller import Poller
from pagefeed.services.schedule import DueReason, due_reason, next_due_at
from pagefeed.services.store import PageStore

from conftest import ScriptedFetcher, T0, stalled_sessionmaker

H = dt.timedelta(hours=1)
COOLDOWN = dt.timedelta(hours=23, minutes=50)
URL = "https://example.com/watched"


class FlakyStore(PageStore):
    def __init__(self, inner: PageStore, failing: set[str]):
        super().__init__(inner._sessionmaker, timeout_s=5)
        self.failing = failing

    async def update_page(self, slug, **fields):
        if slug in self.failing:
            raise StoreError(f"update_page {slug}: disk on fire")
        await super().update_page(slug, **fields)


class StalledWrites(PageStore):
    """Reads work, every write hangs past the store timeout."""

    def __init__(self, inner: PageStore):
        super().__init__(stalled_sessionmaker, timeout_s=0.05)
        self.inner = inner

    async def list_enabled_pages(self):
        return await self.inner.list_enabled_pages()


class TestScenarios:
    async def test_baseline_change_cooldown_failure(self, store, add_page, clock) -> None:
        await add_page("watched", url=URL, check_interval=2 * H)
        fetcher = ScriptedFetcher()
        poller = Poller(store, fetcher, max_workers=2, clock=clock)

        # A: first check only records the baseline
        fetcher.queue(URL, Fetched(b"B1", ETag('"e1"')))
        stats = await poller.run_cycle()
        assert (stats.due, stats.unchanged, stats.changed) == (1, 1, 0)
        page = await store.get_page("watched")
        assert page.last_checked == T0
        assert page.last_modified is None
        assert page.item_id is None
        assert page.http_body_hash == fingerprint(b"B1").digest
        assert page.http_etag == '"e1"'

        # not due again before the interval
        clock.advance(H)
        assert (await poller.run_cycle()).due == 0

        # B: new content two hours later
        clock.advance(H)
        fetcher.queue(URL, Fetched(b"B2", ETag('"e2"')))
        stats = await poller.run_cycle()
        assert stats.changed == 1
        assert fetcher.calls[-1] == (URL, ETag('"e1"'))
        page = await store.get_page("watched")
        t_change = T0 + 2 * H
        assert page.last_modified == page.last_checked == t_change
        assert page.item_id is not None
        assert page.http_body_hash == fingerprint(b"B2").digest
        assert next_due_at(page) == t_change + COOLDOWN
        assert due_reason(page, t_change + COOLDOWN - dt.timedelta(seconds=1)) is None
        item = page.item_id

        # C: after the cooldown the page is unchanged; interval schedule resumes
        clock.now = t_change + COOLDOWN
        assert due_reason(page, clock.now) is DueReason.COOLDOWN_ELAPSED
        fetcher.queue(URL, Fetched(b"B2", ETag('"e2"')))
        stats = await poller.run_cycle()
        assert stats.unchanged == 1
        page = await store.get_page("watched")
        assert page.item_id == item
        assert page.last_modified == t_change
        assert next_due_at(page) == t_change + COOLDOWN + 2 * H

        # D: a timeout advances last_checked and leaves everything else alone
        clock.now = next_due_at(page)
        fetcher.queue(URL, FetchFailed(FailureKind.TRANSIENT, "timeout: ReadTimeout"))
        stats = await poller.run_cycle()
        assert stats.failed == 1
        failed = await store.get_page("watched")
        assert failed.last_error == "timeout: ReadTimeout"
        assert failed.last_checked == clock.now
        assert failed.last_modified == t_change
        assert failed.item_id == item
        assert failed.http_body_hash == page.http_body_hash
        assert failed.http_etag == page.http_etag
        assert next_due_at(failed) == clock.now + 2 * H

        # the next success clears the error
        clock.now = next_due_at(failed)
        fetcher.queue(URL, NotModified())
        await poller.run_cycle()
        page = await store.get_page("watched")
        assert page.last_error is None
        assert page.http_etag == '"e2"'

    async def test_failure_during_first_check_keeps_page_unbaselined(self, store, add_page, clock) -> None:
        await add_page("p", url=URL)
        fetcher = ScriptedFetcher({URL: [FetchFailed(FailureKind.PERMANENT, "HTTP 404 Not Found")]})
        await Poller(store, fetcher, max_workers=1, clock=clock).run_cycle()
        page = await store.get_page("p")
        assert page.last_checked == T0
        assert page.http_body_hash is None
        assert page.last_error == "HTTP 404 Not Found"
        assert page.item_id is None

    async def test_rotated_etag_is_stored_without_change(self, store, add_page, clock) -> None:
        await add_page("p", url=URL, last_checked=T0 - 3 * H, http_etag='"old"', http_body_hash=fingerprint(b"x").digest)
        fetcher = ScriptedFetcher({URL: [Fetched(b"x", ETag('"new"'))]})
        stats = await Poller(store, fetcher, max_workers=1, clock=clock).run_cycle()
        assert stats.unchanged == 1
        page = await store.get_page("p")
        assert page.http_etag == '"new"'
        assert page.last_modified is None

    async def test_304_with_new_validator_rotates_etag(self, store, add_page, clock) -> None:
        digest = fingerprint(b"x").digest
        await add_page("p", url=URL, last_checked=T0 - 3 * H, http_etag='"old"', http_body_hash=digest)
        fetcher = ScriptedFetcher({URL: [NotModified(etag=ETag('"new"'))]})
        stats = await Poller(store, fetcher, max_workers=1, clock=clock).run_cycle()
        assert stats.unchanged == 1
        assert fetcher.calls == [(URL, ETag('"old"'))]
        page = await store.get_page("p")
        assert page.http_etag == '"new"'
        assert page.http_body_hash == digest
        assert page.last_checked == T0
        assert page.last_modified is None

    async def test_delete_regex_suppresses_volatile_change(self, store, add_page, clock) -> None:
        regex = r"nonce=\d+"
        await add_page(
            "p", url=URL, delete_regex=regex, last_checked=T0 - 3 * H,
            http_body_hash=fingerprint(b"<p>x</p> nonce=1", regex).digest,
        )
        fetcher = ScriptedFetcher({URL: [Fetched(b"<p>x</p> nonce=2", None)]})
        stats = await Poller(store, fetcher, max_workers=1, clock=clock).run_cycle()
        assert stats.unchanged == 1


class TestIsolation:
    async def test_one_failing_page_does_not_stop_others(self, store, add_page, clock) -> None:
        for slug in ("a", "b", "c"):
            await add_page(slug)
        fetcher = ScriptedFetcher({
            "https://example.com/a": [Fetched(b"a", None)],
            "https://example.com/b": [FetchFailed(FailureKind.TRANSIENT, "ConnectError: refused")],
            "https://example.com/c": [Fetched(b"c", None)],
        })
        stats = await Poller(store, fetcher, max_workers=3, clock=clock).run_cycle()
        assert (stats.unchanged, stats.failed) == (2, 1)
        assert stats.errors == ["page b: ConnectError: refused"]

    async def test_store_error_abandons_only_that_page(self, store, add_page, clock) -> None:
        await add_page("good")
        await add_page("bad")
        fetcher = ScriptedFetcher({
            "https://example.com/good": [Fetched(b"g", None)],
            "https://example.com/bad": [Fetched(b"b", None)],
        })
        stats = await Poller(FlakyStore(store, {"bad"}), fetcher, max_workers=2, clock=clock).run_cycle()
        assert stats.store_errors == 1
        assert stats.unchanged == 1
        bad = await store.get_page("bad")
        assert bad.last_checked is None
        assert bad.http_body_hash is None
        assert (await store.get_page("good")).last_checked == T0

    async def test_unexpected_exception_is_contained(self, store, add_page, clock) -> None:
        await add_page("a")
        await add_page("b")

        class Exploding(ScriptedFetcher):
            async def fetch(self, url, etag):
                if url.endswith("/a"):
                    raise RuntimeError("kaboom")
                return await super().fetch(url, etag)

        fetcher = Exploding({"https://example.com/b": [Fetched(b"b", None)]})
        poller = Poller(store, fetcher, max_workers=2, clock=clock)
        stats = await poller.run_cycle()
        assert stats.unchanged == 1
        assert any("kaboom" in e for e in stats.errors)
        assert poller.in_flight == frozenset()

    async def test_corrupt_stored_hash_is_recorded_as_failure(self, store, add_page, clock) -> None:
        # a 16-byte hash cannot be a fingerprint
        await add_page("p", url=URL, last_checked=T0, http_body_hash=b"\x01" * 16)
        clock.now = T0 + 2 * H
        fetcher = ScriptedFetcher({URL: [Fetched(b"x", None)] * 3})
        poller = Poller(store, fetcher, max_workers=1, clock=clock)

        first = await poller.run_cycle()
        assert first.failed == 1
        assert first.store_errors == 0
        for _ in range(2):
            assert (await poller.run_cycle()).due == 0

        assert len(fetcher.calls) == 1
        page = await store.get_page("p")
        assert page.last_checked == T0 + 2 * H
        assert page.last_error.startswith("processing error")
        assert page.http_body_hash == b"\x01" * 16
        assert page.item_id is None

    async def test_stalled_write_is_a_store_error(self, store, add_page, clock) -> None:
        await add_page("p", url=URL)
        fetcher = ScriptedFetcher({URL: [Fetched(b"x", None)]})
        stats = await Poller(StalledWrites(store), fetcher, max_workers=1, clock=clock).run_cycle()
        assert stats.store_errors == 1
        assert stats.unchanged == 0
        assert "timed out" in stats.errors[0]
        page = await store.get_page("p")
        assert page.last_checked is None
        assert page.http_body_hash is None

    async def test_listing_failure_yields_empty_cycle(self, store, clock) -> None:
        class Down(PageStore):
            async def list_enabled_pages(self):
                raise StoreError("list_enabled_pages: timed out after 5s")

        stats = await Poller(Down(store._sessionmaker, 5), ScriptedFetcher(), max_workers=1, clock=clock).run_cycle()
        assert stats.store_errors == 1
        assert stats.due == 0


class TestConcurrency:
    async def test_worker_limit(self, store, add_page, clock) -> None:
        fetcher = ScriptedFetcher(delay=0.01)
        for i in range(6):
            await add_page(f"p{i}")
            fetcher.queue(f"https://example.com/p{i}", Fetched(b"x", None))
        stats = await Poller(store, fetcher, max_workers=2, clock=clock).run_cycle()
        assert stats.unchanged == 6
        assert fetcher.max_active == 2

    async def test_page_is_never_fetched_twice_at_once(self, store, add_page, clock) -> None:
        page = await add_page("p", url=URL)
        started = asyncio.Event()
        release = asyncio.Event()

        class Gated(ScriptedFetcher):
            async def fetch(self, url, etag):
                started.set()
                await release.wait()
                return await super().fetch(url, etag)

        fetcher = Gated({URL: [Fetched(b"x", None)]})
        poller = Poller(store, fetcher, max_workers=2, clock=clock)
        first = asyncio.create_task(poller.check_page(page))
        await started.wait()

        assert poller.in_flight == {"p"}
        assert await poller.check_page(page) is None
        assert (await poller.run_cycle()).due == 0

        release.set()
        result = await first
        assert result.verdict is Verdict.UNCHANGED
        assert result.recorded
        assert len(fetcher.calls) == 1
        assert poller.in_flight == frozenset()
