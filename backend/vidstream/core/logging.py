"""Logging configuration.

The library itself only creates loggers under ``vidstream``; handlers are
installed by :func:`setup_logging`, which the HTTP facade calls on import.
"""
import json
import logging
import sys

from vidstream.core.config import settings

ROOT_LOGGER = "vidstream"

_HUMAN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str | None = None) -> None:
    """Install a stdout handler on the root logger.

    Args:
        level: Overrides ``settings.LOG_LEVEL``; ``DEBUG`` setting forces DEBUG
    """
    name = "DEBUG" if settings.DEBUG else (level or settings.LOG_LEVEL)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if settings.is_production else logging.Formatter(_HUMAN_FORMAT))

    logging.basicConfig(level=getattr(logging, name.upper()), handlers=[handler])

    # Per-request noise from the HTTP stack
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


# Silent unless the host application configures logging
logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())
