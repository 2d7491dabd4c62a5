from __future__ import annotations


class PagefeedError(Exception):
    """Base class for errors raised by pagefeed."""


class StoreError(PagefeedError):
    """A read or write against the page store failed or timed out."""


class ConfigError(PagefeedError):
    """Settings are unusable; raised at startup only."""
