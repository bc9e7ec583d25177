"""Logging configuration."""

import logging
import sys

# Attributes every LogRecord has; anything else came in through extra={...}
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

NOISY_LOGGERS = ("azure", "sqlalchemy.engine", "httpx", "uvicorn.access")


class ExtraFieldsFormatter(logging.Formatter):
    """Appends `extra` fields as key=value pairs after the message."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = {k: v for k, v in vars(record).items() if k not in _RECORD_FIELDS}
        if extras:
            line += " | " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return line


def configure_logging(level: str = "INFO"):
    """Configure console logging for the server and the CLI scripts.

    Call this once at startup, before any logging occurs.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level.upper())
    console_handler.setFormatter(ExtraFieldsFormatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name.

    Usage:
        from .logging_config import get_logger
        logger = get_logger(__name__)
        logger.info("Role changed", extra={"actor": "alice", "tier": "write"})
    """
    return logging.getLogger(name)
