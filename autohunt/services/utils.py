import logging
from datetime import datetime, timezone

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def configure_logging(level: str | None = None):
    if level is None:
        from autohunt.config import settings
        level = settings.LOG_LEVEL
    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, str(level).upper(), logging.INFO)
    )
