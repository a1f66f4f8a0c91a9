"""Shop Tracker: stock, sales and purchases for one shop kept in an Excel workbook.

Importing the package sets up the shared ``shop_tracker`` logger. Log records
go to a rotating file and to stderr, so command output on stdout stays clean.
``SHOP_TRACKER_LOG_DIR`` and ``SHOP_TRACKER_LOG_LEVEL`` override where the file
lives and how much is written.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("SHOP_TRACKER_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "shop_tracker.log"
LOG_LEVEL = os.environ.get("SHOP_TRACKER_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Attach the file and console handlers to the package logger once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level(LOG_LEVEL)
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to open the shop log at '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    # Only problems reach the terminal; the full trail stays in the file.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(max(level, logging.WARNING))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Shop Tracker %s logging to '%s'", __version__, LOG_FILE)
