import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import g, has_request_context

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"
_NO_REQUEST = "-"


class RequestIdFilter(logging.Filter):
    """Stamp each record with the per-request id assigned in load_current_user()."""

    def filter(self, record: logging.LogRecord) -> bool:
        rid = None
        if has_request_context():
            rid = getattr(g, "request_id", None)
        record.request_id = rid or _NO_REQUEST
        return True


class SafeFormatter(logging.Formatter):
    """Formatter that tolerates records emitted by handlers without the filter."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = _NO_REQUEST
        return super().format(record)


def setup_logging(level: str = "INFO", log_file: str | None = None) -> logging.Logger:
    """
    Configure the `app` logger hierarchy (stream + optional rotating file).
    Idempotent: repeated create_app() calls in tests do not stack handlers.
    """
    logger = logging.getLogger("app")
    logger.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
    if getattr(logger, "_tenanthub_configured", False):
        return logger

    formatter = SafeFormatter(LOG_FORMAT)

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    stream.addFilter(RequestIdFilter())
    logger.addHandler(stream)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(RequestIdFilter())
        logger.addHandler(file_handler)

    logger._tenanthub_configured = True  # type: ignore[attr-defined]
    logger.info("Logging configured (level=%s, file=%s)", level, log_file or "-")
    return logger
