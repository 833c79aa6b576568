"""Logging setup for the ``santa.*`` loggers.

Every line carries the id of the HTTP request that produced it (``-`` outside
a request), so a draw, its notifications and its audit events can be read
back together.
"""
import logging
from contextvars import ContextVar
from pathlib import Path

from santa_api.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def _resolve_level(name: str | None) -> int:
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _missing_handlers(root: logging.Logger, log_file: str) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if not root.handlers:
        handlers.append(logging.StreamHandler())
    if log_file:
        log_path = Path(log_file).resolve()
        already_open = any(
            getattr(handler, "baseFilename", None) == str(log_path) for handler in root.handlers
        )
        if not already_open:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    return handlers


def configure_logging() -> logging.Logger:
    level = _resolve_level(settings.log_level)
    root = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in _missing_handlers(root, settings.log_file):
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)
    root.setLevel(level)

    logger = logging.getLogger("santa")
    logger.setLevel(level)
    return logger
