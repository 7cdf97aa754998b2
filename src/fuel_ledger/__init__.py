"""Ledger and stock aggregation engine for a fuel station.

Importing the package configures the shared ``fuel_ledger`` logger. Records
go to a rotating file under ``.logs/`` and to stderr. Set
``FUEL_LEDGER_LOG_LEVEL`` to change the threshold of both handlers.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "fuel_ledger.log"
LOG_LEVEL_ENV = "FUEL_LEDGER_LOG_LEVEL"


def _resolve_level() -> int:
    name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Attach the file and console handlers once per process."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level()
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        ledger_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"Warning: ledger log file '{LOG_FILE}' is unavailable: {exc}", file=sys.stderr)
    else:
        ledger_handler.setLevel(level)
        ledger_handler.setFormatter(formatter)
        logger.addHandler(ledger_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)

    return logger


log = _configure_logging()
log.debug("Logging ready for '%s' at level %s", __name__, logging.getLevelName(log.level))
