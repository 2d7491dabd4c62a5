from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from pagefeed.models import Page
from pagefeed.services.store import PageStore

TITLE_SEPARATOR = " / "

@dataclass(frozen=True)
class FeedEntry:
    item_id: uuid.UUID
    slug: str
    name: str
    category: tuple[str, ...]
    url: str
    last_modified: dt.datetime
    last_error: Optional[str] = None

    @property
    def title(self) -> str:
        return TITLE_SEPARATOR.join((*self.category, self.name))

    @property
    def guid(self) -> str:
        return self.item_id.urn

    @property
    def description(self) -> str:
        if self.last_error:
            return f"Error while checking {self.name}: {self.last_error}"
        return f"{self.name} was updated."

def entry_for(page: Page) -> Optional[FeedEntry]:
    # item_id without last_modified would break ordering; both are written together
    if page.item_id is None or page.last_modified is None:
        return None
    return FeedEntry(
        item_id=page.item_id,
        slug=page.slug,
        name=page.name,
        category=page.category_path,
        url=page.url,
        last_modified=page.last_modified,
        last_error=page.last_error,
    )

def project_entries(pages: Iterable[Page]) -> list[FeedEntry]:
    entries = [e for e in (entry_for(p) for p in pages) if e is not None]
    entries.sort(key=lambda e: e.last_modified, reverse=True)
    return entries

async def list_feed_entries(store: PageStore) -> list[FeedEntry]:
    return project_entries(await store.list_feed_pages())
