import logging

from session_toolkit.logging_utils import (
    SessionContextFilter,
    get_current_session_id,
    install_session_log_filter,
    session_log_context,
)


def _record() -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, "message", None, None)


def test_session_log_context_binds_and_restores() -> None:
    assert get_current_session_id() is None
    with session_log_context("outer"):
        assert get_current_session_id() == "outer"
        with session_log_context("inner"):
            assert get_current_session_id() == "inner"
        assert get_current_session_id() == "outer"
    assert get_current_session_id() is None


def test_filter_sets_session_id_on_record() -> None:
    log_filter = SessionContextFilter()

    record = _record()
    assert log_filter.filter(record) is True
    assert record.session_id == "-"

    with session_log_context("abc"):
        record = _record()
        log_filter.filter(record)
    assert record.session_id == "abc"


def test_install_filter_is_idempotent() -> None:
    logger = logging.getLogger("session_toolkit.tests.install")
    install_session_log_filter([logger])
    install_session_log_filter([logger])

    assert sum(isinstance(flt, SessionContextFilter) for flt in logger.filters) == 1
