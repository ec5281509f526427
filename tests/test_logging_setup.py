import logging

from financial_ingest.logging_setup import account_logger, get_logger


class _Collect(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


def test_account_logger_prefixes_messages():
    logger = get_logger("financial_ingest.tests.account")
    handler = _Collect()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        account_logger(logger, "acct-9").warning("skipped %d rows", 3)
    finally:
        logger.removeHandler(handler)
    assert handler.messages == ["[acct-9] skipped 3 rows"]


def test_get_logger_is_silent_by_default():
    pkg = logging.getLogger("financial_ingest")
    get_logger("financial_ingest.tests.silent")
    assert pkg.handlers
