"""Logging setup with the current connection id on every record."""
from __future__ import annotations

import logging
from contextvars import ContextVar

connection_id_ctx: ContextVar[str] = ContextVar("connection_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [conn=%(connection_id)s]: %(message)s"


class ConnectionIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.connection_id = connection_id_ctx.get()
        return True


def configure_logging(level: str | int = logging.INFO) -> None:
    """Install a stream handler on the ``chat_client`` logger tree."""
    logger = logging.getLogger("chat_client")
    logger.setLevel(level)
    if not any(isinstance(f, ConnectionIdFilter) for h in logger.handlers for f in h.filters):
        handler = logging.StreamHandler()
        handler.addFilter(ConnectionIdFilter())
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
