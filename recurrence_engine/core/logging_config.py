"""
Central logging configuration for the recurrence engine.

Library modules only create loggers; hosts call ``configure_engine_logging``
once at startup. Debug mode can be forced through the environment for
troubleshooting without code changes.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import os
import uuid
from collections.abc import Iterator
from typing import Optional

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("recurrence_engine_request_id", default="no-request-id")

LOG_FORMAT = "[%(asctime)s] [%(request_id)s] %(levelname)s - %(name)s - %(message)s"


def get_request_id() -> str:
    """Return the correlation id bound to the current context."""
    return _request_id.get()


@contextlib.contextmanager
def request_context(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for log records emitted inside the block.

    Works across ``await`` points since it is backed by a ContextVar.
    """
    token = _request_id.set(request_id or uuid.uuid4().hex[:12])
    try:
        yield _request_id.get()
    finally:
        _request_id.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def configure_engine_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for the recurrence engine.

    Args:
        debug_mode: Whether to enable debug logging for recurrence_engine modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        RECURRENCE_ENGINE_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        RECURRENCE_ENGINE_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("RECURRENCE_ENGINE_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("RECURRENCE_ENGINE_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    correlation_filter = CorrelationIdFilter()

    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, CorrelationIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(correlation_filter)

    engine_level = logging.DEBUG if final_debug else logging.INFO
    logging.getLogger("recurrence_engine").setLevel(engine_level)
    # Per-hit cache logging is only useful while debugging
    logging.getLogger("recurrence_engine.domain.instance_cache").setLevel(
        logging.DEBUG if final_debug else logging.WARNING
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Recurrence engine logging configured: debug=%s, root_level=%s",
        final_debug,
        logging.getLevelName(root_level),
    )
