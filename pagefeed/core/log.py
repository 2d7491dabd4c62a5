from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    level_value = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level_value, format=LOG_FORMAT)
    root.setLevel(level_value)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level_value, logging.WARNING))
    return logging.getLogger("pagefeed")
