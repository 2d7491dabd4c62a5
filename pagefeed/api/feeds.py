from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from pagefeed.core.config import settings
from pagefeed.core.db import get_sessionmaker
from pagefeed.core.errors import StoreError
from pagefeed.services.feed import entry_for, list_feed_entries
from pagefeed.services.render import render_opml, render_page_rss, render_rss
from pagefeed.services.store import PageStore

router = APIRouter(tags=["feeds"])

RSS_MEDIA_TYPE = "application/rss+xml"
OPML_MEDIA_TYPE = "application/xml"

def get_store() -> PageStore:
    return PageStore(get_sessionmaker(), timeout_s=settings.store_timeout_seconds)

@router.get("/")
async def opml(request: Request, store: PageStore = Depends(get_store)):
    try:
        pages = await store.list_enabled_pages()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return Response(content=render_opml(str(request.base_url), pages), media_type=OPML_MEDIA_TYPE)

@router.get("/feed")
async def combined_feed(request: Request, store: PageStore = Depends(get_store)):
    try:
        entries = await list_feed_entries(store)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    body = render_rss("pagefeed", str(request.base_url), entries, description="Changes to watched pages")
    return Response(content=body, media_type=RSS_MEDIA_TYPE)

@router.get("/pages/{slug}")
async def page_feed(slug: str, store: PageStore = Depends(get_store)):
    try:
        page = await store.get_page(slug)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not page:
        raise HTTPException(status_code=404, detail="Page not found")
    return Response(content=render_page_rss(page, entry_for(page)), media_type=RSS_MEDIA_TYPE)
