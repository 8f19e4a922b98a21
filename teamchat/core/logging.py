# teamchat/core/logging.py

import logging
import os
import re
import sys


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Libraries that log every request or command at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "redis", "websockets")

# Assistant requests carry the API key as a query parameter
_SECRET_PARAM = re.compile(r"([?&](?:key|token)=)[^&\s\"']+")


class RedactSecretsFilter(logging.Filter):
    """Masks ``key=`` / ``token=`` query values in formatted log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _SECRET_PARAM.sub(r"\1***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging() -> None:
    """
    Configure application-wide logging.

    - Root level from LOG_LEVEL (default INFO), format from LOG_FORMAT
    - One stdout handler, unless Uvicorn (or a test runner) already installed one
    - Every root handler gets the secret-redacting filter
    - Library chatter is capped at WARNING either way
    """
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, log_level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(os.getenv("LOG_FORMAT", DEFAULT_FORMAT)))
        root_logger.addHandler(handler)

    for handler in root_logger.handlers:
        if not any(isinstance(f, RedactSecretsFilter) for f in handler.filters):
            handler.addFilter(RedactSecretsFilter())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Access log stays on so polling traffic is visible
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Usage:
        from teamchat.core.logging import get_logger

        logger = get_logger(__name__)
    """
    return logging.getLogger(name)
