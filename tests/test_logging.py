import logging

from app.core.logging import ExtraFieldsFormatter, SensitiveQueryFilter, setup_logging


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("app.payments", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_sorted_extra_fields() -> None:
    formatter = ExtraFieldsFormatter("%(levelname)s | %(message)s%(extra_fields)s")

    line = formatter.format(_record("payment_redirect_resolved", state="success", invoice_id="inv-1"))

    assert line == "INFO | payment_redirect_resolved | invoice_id=inv-1 state=success"


def test_formatter_without_extra_fields_leaves_message_alone() -> None:
    formatter = ExtraFieldsFormatter("%(message)s%(extra_fields)s")

    assert formatter.format(_record("payment_verification_joined")) == "payment_verification_joined"


def test_sensitive_access_lines_are_dropped() -> None:
    query_filter = SensitiveQueryFilter()

    assert query_filter.filter(_record("GET /payment-redirect?invoice_id=inv-1 200")) is True
    assert query_filter.filter(_record("GET /pay?card_number=4111 200")) is False


def test_setup_logging_installs_filter_once() -> None:
    access_logger = logging.getLogger("uvicorn.access")
    root_logger = logging.getLogger()
    saved_handlers = list(root_logger.handlers)
    saved_level = root_logger.level
    try:
        setup_logging("info")
        setup_logging("info")

        filters = [item for item in access_logger.filters if isinstance(item, SensitiveQueryFilter)]
        assert len(filters) == 1
        assert all(isinstance(handler.formatter, ExtraFieldsFormatter) for handler in root_logger.handlers)
    finally:
        for item in list(access_logger.filters):
            if isinstance(item, SensitiveQueryFilter):
                access_logger.removeFilter(item)
        root_logger.handlers[:] = saved_handlers
        root_logger.setLevel(saved_level)
