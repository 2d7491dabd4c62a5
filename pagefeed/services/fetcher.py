from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Optional, Union
import httpx

from pagefeed.models import ETag


class FailureKind(str, enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    SIZE_EXCEEDED = "size_exceeded"


@dataclass(frozen=True)
class NotModified:
    # a 304 may carry a rotated validator
    etag: Optional[ETag] = None


@dataclass(frozen=True)
class Fetched:
    body: bytes
    etag: Optional[ETag]


@dataclass(frozen=True)
class FetchFailed:
    kind: FailureKind
    reason: str


FetchOutcome = Union[NotModified, Fetched, FetchFailed]


class BodyTooLarge(Exception):
    pass


def _status_failure(status: int) -> FetchFailed:
    if status >= 500 or status == 429:
        kind = FailureKind.TRANSIENT
    else:
        kind = FailureKind.PERMANENT
    try:
        phrase = httpx.codes(status).phrase
    except ValueError:
        phrase = ""
    return FetchFailed(kind, f"HTTP {status} {phrase}".rstrip())


class Fetcher:
    """One conditional GET per call. Never retries and never touches the store.

    ``timeout_s`` bounds the whole request, body included, not just each
    connect/read step.
    """

    def __init__(self, user_agent: str, timeout_s: float, max_body_bytes: int):
        self._headers = {"User-Agent": user_agent}
        self._timeout_s = timeout_s
        self._timeout = httpx.Timeout(timeout_s)
        self._max_body_bytes = max_body_bytes

    async def fetch(self, url: str, etag: ETag | None) -> FetchOutcome:
        try:
            return await asyncio.wait_for(self._get(url, etag), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            return FetchFailed(FailureKind.TRANSIENT, f"timeout: no complete response within {self._timeout_s}s")
        except BodyTooLarge:
            return FetchFailed(FailureKind.SIZE_EXCEEDED, f"response body exceeds {self._max_body_bytes} bytes")
        except httpx.TimeoutException as e:
            return FetchFailed(FailureKind.TRANSIENT, f"timeout: {type(e).__name__}")
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return FetchFailed(FailureKind.PERMANENT, f"invalid url: {e}")
        except httpx.HTTPError as e:
            return FetchFailed(FailureKind.TRANSIENT, f"{type(e).__name__}: {e}")

    async def _get(self, url: str, etag: ETag | None) -> FetchOutcome:
        headers = dict(self._headers)
        if etag is not None:
            headers["If-None-Match"] = etag.value

        async with httpx.AsyncClient(headers=headers, timeout=self._timeout, follow_redirects=True) as client:
            async with client.stream("GET", url) as resp:
                new_etag = resp.headers.get("ETag")
                if resp.status_code == 304:
                    if etag is None:
                        return FetchFailed(FailureKind.PERMANENT, "HTTP 304 without a conditional request")
                    return NotModified(etag=ETag(new_etag) if new_etag else None)
                if not resp.is_success:
                    return _status_failure(resp.status_code)
                body = await self._read_capped(resp)
                return Fetched(body=body, etag=ETag(new_etag) if new_etag else None)

    async def _read_capped(self, resp: httpx.Response) -> bytes:
        declared = resp.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self._max_body_bytes:
            raise BodyTooLarge()
        buf = bytearray()
        async for chunk in resp.aiter_bytes():
            buf.extend(chunk)
            if len(buf) > self._max_body_bytes:
                raise BodyTooLarge()
        return bytes(buf)
