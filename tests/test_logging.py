import json
import logging
import sys
from datetime import datetime
from decimal import Decimal
from io import StringIO

import pytest

from costing.logging_config import StructuredFormatter, configure_logging, get_logger, reset_logging


@pytest.fixture
def fresh_logging():
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _record(msg="fifo_consumed", **extra) -> logging.LogRecord:
    record = logging.LogRecord("costing.services.fifo_engine", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_one_json_object():
    line = StructuredFormatter().format(
        _record(product_id=7, total_cost=Decimal("12.5000"), as_of=datetime(2024, 1, 5))
    )

    payload = json.loads(line)
    assert payload["message"] == "fifo_consumed"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "costing.services.fifo_engine"
    assert payload["product_id"] == 7
    assert payload["total_cost"] == "12.5000"
    assert payload["as_of"] == "2024-01-05T00:00:00"


def test_formatter_includes_exception():
    try:
        raise ValueError("bad lot")
    except ValueError:
        record = logging.LogRecord("costing", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    payload = json.loads(StructuredFormatter().format(record))
    assert payload["exc_type"] == "ValueError"
    assert payload["exc_message"] == "bad lot"
    assert "Traceback" in payload["traceback"]


def test_get_logger_prefixes_names():
    assert get_logger("scripts.batch").name == "costing.scripts.batch"
    assert get_logger("costing.db").name == "costing.db"


def test_configure_logging_is_idempotent(fresh_logging):
    stream = StringIO()
    configure_logging(level="INFO", stream=stream)
    configure_logging(level="DEBUG", stream=stream)

    logger = logging.getLogger("costing")
    assert len(logger.handlers) == 1
    assert logger.level == logging.INFO
    assert logger.propagate is False

    get_logger("tests").info("hello", extra={"answer": 42})
    assert json.loads(stream.getvalue())["answer"] == 42


def test_text_format(fresh_logging):
    stream = StringIO()
    configure_logging(level="INFO", fmt="text", stream=stream)

    get_logger("tests").warning("plain")

    assert "WARNING costing.tests plain" in stream.getvalue()
