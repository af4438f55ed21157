import logging
import os
import sys
from zoneinfo import ZoneInfo

# -------------------------------------------------------------------
# Store / transport
# -------------------------------------------------------------------
API_BASE_URL = os.getenv("WELLEN_API_BASE_URL", "http://localhost:3001/api").rstrip("/")

# Initial wave-list fetch: 1 try + 2 retries, fixed delay between attempts
LIST_RETRY_ATTEMPTS = int(os.getenv("WELLEN_LIST_RETRY_ATTEMPTS", "3"))
LIST_RETRY_DELAY = float(os.getenv("WELLEN_LIST_RETRY_DELAY", "0.5"))

# -------------------------------------------------------------------
# Regional conventions
# -------------------------------------------------------------------
TIMEZONE_NAME = os.getenv("WELLEN_TIMEZONE", "Europe/Vienna")
TIMEZONE = ZoneInfo(TIMEZONE_NAME)

# -------------------------------------------------------------------
# Action history (optional)
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL")

LOG_LEVEL = os.getenv("WELLEN_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """
    Install a single stream handler on the package logger.

    Safe to call more than once (uvicorn reloads, tests): handlers are only
    added the first time.
    """
    logger = logging.getLogger("wellen")
    logger.setLevel(level)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger
