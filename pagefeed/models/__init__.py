from pagefeed.models.page import Page, DEFAULT_CHECK_INTERVAL, DEFAULT_COOLDOWN
from pagefeed.models.tokens import ETag, Fingerprint

__all__ = ["Page", "DEFAULT_CHECK_INTERVAL", "DEFAULT_COOLDOWN", "ETag", "Fingerprint"]
