from __future__ import annotations

from email.utils import format_datetime
from typing import Iterable, Optional

from lxml import etree

from pagefeed.models import Page
from pagefeed.services.feed import FeedEntry, TITLE_SEPARATOR

def _sub(parent: etree._Element, tag: str, text: Optional[str] = None, **attrs: str) -> etree._Element:
    el = etree.SubElement(parent, tag, **attrs)
    if text is not None:
        el.text = text
    return el

def _item(channel: etree._Element, entry: FeedEntry) -> None:
    item = _sub(channel, "item")
    _sub(item, "title", entry.title)
    _sub(item, "link", entry.url)
    _sub(item, "description", entry.description)
    _sub(item, "pubDate", format_datetime(entry.last_modified))
    _sub(item, "guid", entry.guid, isPermaLink="false")
    if entry.category:
        _sub(item, "category", "/".join(entry.category))

def render_rss(title: str, link: str, entries: Iterable[FeedEntry], description: Optional[str] = None) -> bytes:
    rss = etree.Element("rss", version="2.0")
    channel = _sub(rss, "channel")
    _sub(channel, "title", title)
    _sub(channel, "link", link)
    _sub(channel, "description", description or title)
    entries = list(entries)
    if entries:
        _sub(channel, "lastBuildDate", format_datetime(max(e.last_modified for e in entries)))
    for entry in entries:
        _item(channel, entry)
    return etree.tostring(rss, xml_declaration=True, encoding="UTF-8", pretty_print=True)

def render_page_rss(page: Page, entry: Optional[FeedEntry]) -> bytes:
    title = TITLE_SEPARATOR.join((*page.category_path, page.name))
    return render_rss(title, page.url, [entry] if entry else [], description=f"Changes to {page.name}")

def render_opml(base_url: str, pages: Iterable[Page], title: str = "pagefeed") -> bytes:
    """OPML 2.0 subscription list, one outline per page feed."""
    if not base_url.endswith("/"):
        base_url += "/"
    opml = etree.Element("opml", version="2.0")
    head = _sub(opml, "head")
    _sub(head, "title", title)
    body = _sub(opml, "body")
    for page in pages:
        attrs = {
            "type": "rss",
            "text": page.name,
            "title": page.name,
            "xmlUrl": f"{base_url}pages/{page.slug}",
            "htmlUrl": page.url,
        }
        if page.category_path:
            attrs["category"] = "/" + "/".join(page.category_path)
        _sub(body, "outline", **attrs)
    return etree.tostring(opml, xml_declaration=True, encoding="UTF-8", pretty_print=True)
