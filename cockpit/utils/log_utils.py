"""
Logging setup for the cockpit backend.

Every module logs through ``get_logger(__name__)`` into the ``cockpit``
hierarchy, one pipe-separated line per record on stdout. The level comes
from COCKPIT_LOG_LEVEL.
"""
import logging
import sys
import time
from typing import Optional

from cockpit.core.constants import LOG_LEVEL

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"

# Client libraries that log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "redis")

_configured = False


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Install the stdout handler once; later calls just return the package logger."""
    global _configured
    if _configured:
        return logging.getLogger("cockpit")

    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
    return logging.getLogger("cockpit")


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    if name == "cockpit" or name.startswith("cockpit."):
        return logging.getLogger(name)
    return logging.getLogger(f"cockpit.{name}")


def elapsed_ms(started: float) -> float:
    """Milliseconds since a ``time.perf_counter()`` reading, rounded to 2 places."""
    return round((time.perf_counter() - started) * 1000, 2)
