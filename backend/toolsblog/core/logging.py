"""Process-wide logging setup

Services log through named loggers ("billing", "webhooks", "affiliate",
"analytics", "api_access") so money paths can be filtered independently.
"""
import logging

from toolsblog.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client libraries that log every HTTP round trip at INFO
CHATTY_LOGGERS = ("stripe", "httpx", "httpcore", "urllib3")


def resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: str = None):
    """Configure the root logger from LOG_LEVEL (or ``level``)"""
    logging.basicConfig(
        level=resolve_level(level or settings.LOG_LEVEL),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if settings.ENVIRONMENT == "production":
        # Per-request lines go to the OTLP pipeline; keep stdout for warnings
        logging.getLogger("api_access").setLevel(logging.WARNING)
