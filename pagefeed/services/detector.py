from __future__ import annotations

import enum
import functools
import hashlib
import re
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from pagefeed.models import ETag, Fingerprint
from pagefeed.services.fetcher import FetchOutcome, NotModified, Fetched, FetchFailed


class Verdict(str, enum.Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FAILED = "failed"


@dataclass(frozen=True)
class Detection:
    verdict: Verdict
    # New fingerprint to store; None means keep what the row has.
    # With a fingerprint, etag is the response's validator (None clears it);
    # without one (304), None etag means keep.
    fingerprint: Optional[Fingerprint] = None
    etag: Optional[ETag] = None
    baseline: bool = False
    error: Optional[str] = None


class ContentError(ValueError):
    pass


@functools.lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[bytes]:
    try:
        return re.compile(pattern.encode("utf-8"))
    except re.error as e:
        raise ContentError(f"invalid delete_regex {pattern!r}: {e}") from e


def select_region(body: bytes, selector: str) -> bytes:
    soup = BeautifulSoup(body, "lxml")
    try:
        matches = soup.select(selector)
    except SelectorSyntaxError as e:
        raise ContentError(f"invalid content_selector {selector!r}: {e}") from e
    return "".join(str(el) for el in matches).encode("utf-8")


def strip_volatile(body: bytes, delete_regex: str | None) -> bytes:
    if not delete_regex:
        return body
    return _compile(delete_regex).sub(b"", body)


def fingerprint(body: bytes, delete_regex: str | None = None, content_selector: str | None = None) -> Fingerprint:
    if content_selector:
        body = select_region(body, content_selector)
    body = strip_volatile(body, delete_regex)
    return Fingerprint(hashlib.sha3_256(body).digest())


def detect_change(
    outcome: FetchOutcome,
    prior: Fingerprint | None,
    delete_regex: str | None = None,
    content_selector: str | None = None,
) -> Detection:
    """Decide whether a fetch outcome is a reportable change.

    The first successful fetch of a page only establishes the baseline
    fingerprint and is never reported. Comparison is exact.
    """
    if isinstance(outcome, NotModified):
        return Detection(Verdict.UNCHANGED, etag=outcome.etag)

    if isinstance(outcome, FetchFailed):
        return Detection(Verdict.FAILED, error=outcome.reason)

    if not isinstance(outcome, Fetched):
        raise TypeError(f"unexpected fetch outcome {outcome!r}")

    try:
        fp = fingerprint(outcome.body, delete_regex, content_selector)
    except ContentError as e:
        return Detection(Verdict.FAILED, error=str(e))

    if prior is None:
        return Detection(Verdict.UNCHANGED, fingerprint=fp, etag=outcome.etag, baseline=True)
    if fp != prior:
        return Detection(Verdict.CHANGED, fingerprint=fp, etag=outcome.etag)
    return Detection(Verdict.UNCHANGED, fingerprint=fp, etag=outcome.etag)
