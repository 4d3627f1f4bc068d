"""Logging setup for the API and CLI.

Modules log through ``logging.getLogger(__name__)``; this only installs the
root handler and level, read from CREDIT_RATING_LOG_LEVEL (default INFO).
"""

from __future__ import annotations

import logging
import os

LOG_LEVEL_ENV = "CREDIT_RATING_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the root logger.

    Repeated calls only adjust the level. Unknown level names fall back to INFO.
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    if not any(getattr(h, "_credit_rating", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._credit_rating = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(resolved)
