"""JSON logging for the toolforge logger tree.

Every record handled here carries the current request id, and OAuth token
values that slip into a message are masked before it is written.
"""

import logging
import re
import sys
from contextvars import ContextVar
from pythonjsonlogger import jsonlogger
from toolforge.infra.config import config

# Set by RequestIDMiddleware for the duration of a request
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

# Slack bot/user tokens, GitHub tokens and key=value token fields
_TOKEN_PATTERNS = [
    re.compile(r"xox[abpr]-[A-Za-z0-9-]+"),
    re.compile(r"gh[opsu]_[A-Za-z0-9]+"),
    re.compile(r"((?:access|refresh)_token[\"']?\s*[:=]\s*[\"']?)[^\s\"',&}]+"),
]


def redact(message: str) -> str:
    for pattern in _TOKEN_PATTERNS:
        if pattern.groups:
            message = pattern.sub(r"\1[REDACTED]", message)
        else:
            message = pattern.sub("[REDACTED]", message)
    return message


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


class RedactTokensFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(record.getMessage())
        record.args = None
        return True


def setup_logging(stream=None) -> logging.Logger:
    """Attach one JSON stdout handler to the toolforge logger."""
    logger = logging.getLogger("toolforge")
    logger.setLevel(logging.DEBUG if config.DEBUG else logging.INFO)
    logger.handlers = []

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(request_id)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    # Handler-level so records from child loggers pass through them too
    handler.addFilter(RequestContextFilter())
    handler.addFilter(RedactTokensFilter())
    logger.addHandler(handler)

    for name, level in (("uvicorn", logging.INFO), ("sqlalchemy", logging.WARNING),
                        ("httpx", logging.WARNING), ("openai", logging.WARNING)):
        logging.getLogger(name).setLevel(level)

    return logger


app_logger = setup_logging()
