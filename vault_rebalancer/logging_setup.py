"""Logging configuration."""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
SECTION_BAR = "=" * 30


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging; unknown level names fall back to INFO."""
    numeric = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric)

    if not any(getattr(h, "_vault_rebalancer", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._vault_rebalancer = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def log_section(logger: logging.Logger, title: str) -> None:
    """Emit a visually separated section header."""
    logger.info(SECTION_BAR)
    logger.info(title)
    logger.info(SECTION_BAR)
