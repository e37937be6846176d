"""
Logging configuration for the application.

Every module logs through ``logging.getLogger(__name__)``; this sets up the
root handler once for the web app and the management commands.
"""

from __future__ import annotations

import logging
import sys

from tradefolio.config import settings


def setup_logging(level: str | None = None) -> None:
    """Configure application logging."""
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Set third-party library log levels
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("yfinance").setLevel(logging.WARNING)
