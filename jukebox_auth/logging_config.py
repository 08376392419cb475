"""
Logging setup.

One JSON object per line on stdout. Modules log through
``logging.getLogger(__name__)`` and attach context with ``extra={...}``;
access tokens, refresh tokens and session JWTs are never logged.
"""

import logging
import sys

LOG_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}'
)

# Chatty third-party loggers that would echo request URLs at DEBUG
QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
