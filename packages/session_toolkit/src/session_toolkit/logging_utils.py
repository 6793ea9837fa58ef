"""Logging helpers for session correlation."""

from __future__ import annotations

import contextlib
import logging
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

_current_session_id: ContextVar[str | None] = ContextVar("session_toolkit_session_id", default=None)


def get_current_session_id() -> str | None:
    """Return the session id bound to the current context, if any."""
    return _current_session_id.get()


@contextlib.contextmanager
def session_log_context(session_id: str) -> Iterator[None]:
    """Bind ``session_id`` to log records emitted inside the block."""
    token = _current_session_id.set(session_id)
    try:
        yield
    finally:
        _current_session_id.reset(token)


class SessionContextFilter(logging.Filter):
    """Attach the active session id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject session_id into the log record."""
        record.session_id = get_current_session_id() or "-"
        return True


def install_session_log_filter(loggers: Iterable[logging.Logger] | None = None) -> None:
    """Install session context filters for structured logging.

    Args:
        loggers: Optional iterable of loggers to attach the filter to. Defaults to root logger.
    """
    targets = list(loggers) if loggers is not None else [logging.getLogger()]
    for logger in targets:
        if any(isinstance(flt, SessionContextFilter) for flt in logger.filters):
            continue
        logger.addFilter(SessionContextFilter())
