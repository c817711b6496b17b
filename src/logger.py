import logging
import os
import sys

"""
NOTE: To create a logger for each file, we do this:
from src.logger import get_logger
logger = get_logger(__name__) # __name__ is the name of the current module
NOTE: Use of structured logging - anything passed with extra={...} is appended to the line as key=value pairs
"""

# Attributes every LogRecord has. Anything else on the record came from extra={...}
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class KeyValueFormatter(logging.Formatter):
    """Formatter that appends the fields passed through `extra` to the message."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {key: value for key, value in vars(record).items() if key not in _RESERVED_ATTRS}
        if fields:
            line += " | " + " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
        return line


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a specific name."""
    logger = logging.getLogger(name)

    # Prevent adding duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = KeyValueFormatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    return logger
