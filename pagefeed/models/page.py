from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import String, Boolean, Text, Interval, LargeBinary, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from pagefeed.core.db import Base, UTCDateTime
from pagefeed.models.tokens import ETag, Fingerprint, FINGERPRINT_SIZE

DEFAULT_CHECK_INTERVAL = dt.timedelta(hours=1, minutes=50)
DEFAULT_COOLDOWN = dt.timedelta(hours=23, minutes=50)

CATEGORY_SEPARATOR = "/"

class Page(Base):
    __tablename__ = "pages"

    slug: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # "News/Local" style label, presentation only
    category: Mapped[str | None] = mapped_column(String(200), nullable=True)
    delete_regex: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_selector: Mapped[str | None] = mapped_column(Text, nullable=True)

    check_interval: Mapped[dt.timedelta] = mapped_column(Interval, nullable=False, default=DEFAULT_CHECK_INTERVAL)
    cooldown: Mapped[dt.timedelta] = mapped_column(Interval, nullable=False, default=DEFAULT_COOLDOWN)

    last_checked: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_modified: Mapped[dt.datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    item_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    http_etag: Mapped[str | None] = mapped_column(String(200), nullable=True)
    http_body_hash: Mapped[bytes | None] = mapped_column(LargeBinary(FINGERPRINT_SIZE), nullable=True)

    def __init__(self, **kw):
        # column defaults only fire on INSERT; transient rows need them too
        kw.setdefault("enabled", True)
        kw.setdefault("check_interval", DEFAULT_CHECK_INTERVAL)
        kw.setdefault("cooldown", DEFAULT_COOLDOWN)
        super().__init__(**kw)

    @property
    def category_path(self) -> tuple[str, ...]:
        if not self.category:
            return ()
        return tuple(s.strip() for s in self.category.split(CATEGORY_SEPARATOR) if s.strip())

    @property
    def etag(self) -> ETag | None:
        return ETag(self.http_etag) if self.http_etag else None

    @property
    def fingerprint(self) -> Fingerprint | None:
        return Fingerprint(bytes(self.http_body_hash)) if self.http_body_hash is not None else None

    def __repr__(self) -> str:
        return f"<Page {self.slug!r} enabled={self.enabled}>"
