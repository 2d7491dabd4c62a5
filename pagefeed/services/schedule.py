"""Which pages are due for a check.

Everything here is derived from stored fields and the current time; there is
no timer state to lose on restart.
"""
from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import Iterable, Optional

from pagefeed.models import Page


class DueReason(str, enum.Enum):
    NEVER_CHECKED = "never_checked"
    INTERVAL_ELAPSED = "interval_elapsed"
    COOLDOWN_ELAPSED = "cooldown_elapsed"


@dataclass(frozen=True)
class DuePage:
    page: Page
    reason: DueReason


_EPOCH = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def effective_interval(page: Page, now: dt.datetime) -> dt.timedelta:
    if page.last_modified is not None and now - page.last_modified < page.cooldown:
        return page.cooldown
    return page.check_interval


def due_reason(page: Page, now: dt.datetime) -> Optional[DueReason]:
    if not page.enabled:
        return None
    if page.last_checked is None:
        return DueReason.NEVER_CHECKED
    if now - page.last_checked < effective_interval(page, now):
        return None
    if page.last_modified is not None and page.last_checked <= page.last_modified:
        # the previous check is the one that saw the change
        return DueReason.COOLDOWN_ELAPSED
    return DueReason.INTERVAL_ELAPSED


def next_due_at(page: Page) -> Optional[dt.datetime]:
    """Earliest moment ``due_reason`` turns non-None; None if never checked or disabled."""
    if not page.enabled or page.last_checked is None:
        return None
    by_interval = page.last_checked + page.check_interval
    if page.last_modified is None:
        return by_interval
    return max(by_interval, page.last_modified + page.cooldown)


def select_due(pages: Iterable[Page], now: dt.datetime, in_flight: Iterable[str] = ()) -> list[DuePage]:
    claimed = set(in_flight)
    due = []
    for page in pages:
        if page.slug in claimed:
            continue
        reason = due_reason(page, now)
        if reason is not None:
            due.append(DuePage(page, reason))
    # least recently checked first so a slow cycle cannot starve anyone
    due.sort(key=lambda d: (d.page.last_checked or _EPOCH, d.page.slug))
    return due
