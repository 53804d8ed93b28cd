"""
Tests for structured logging.

Verifies:
- StructuredFormatter emits one JSON object per record with extra fields
- LogContext fields are attached and restored by bind()
- Exceptions carry their kernel error code and structured attributes
- configure_logging is idempotent and honours the configured level
"""

import json
import logging
import sys
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from cost_kernel.exceptions import StaleBaselineError
from cost_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def fresh_logging():
    """Unconfigured logging for the test; the suite's DEBUG setup is restored after."""
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _format(record: logging.LogRecord) -> dict:
    return json.loads(StructuredFormatter().format(record))


class TestStructuredFormatter:
    def test_extra_fields_at_top_level(self):
        record = logging.LogRecord("cost_kernel.test", logging.INFO, __file__, 1, "line_saved", (), None)
        record.certification_id = uuid4()
        record.period_amount = Decimal("200.50")

        payload = _format(record)

        assert payload["message"] == "line_saved"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "cost_kernel.test"
        assert payload["period_amount"] == "200.50"
        assert payload["certification_id"] == str(record.certification_id)
        assert "ts" in payload

    def test_context_fields(self):
        project_id = uuid4()
        with LogContext.bind(project_id=project_id, actor_id=None):
            record = logging.LogRecord("cost_kernel.test", logging.INFO, __file__, 1, "msg", (), None)
            payload = _format(record)

        assert payload["project_id"] == str(project_id)
        assert "actor_id" not in payload
        assert LogContext.get_all() == {}

    def test_exception_fields(self):
        exc = StaleBaselineError(
            "cert", "node", expected_version=1, actual_version=2, reason="moved"
        )
        try:
            raise exc
        except StaleBaselineError:
            record = logging.LogRecord(
                "cost_kernel.test", logging.WARNING, __file__, 1, "failed", (), sys.exc_info()
            )

        payload = _format(record)

        assert payload["exc_type"] == "StaleBaselineError"
        assert payload["exc_code"] == StaleBaselineError.code
        assert payload["exc_expected_version"] == 1
        assert payload["exc_actual_version"] == 2
        assert "traceback" in payload


class TestConfigureLogging:
    def test_level_and_stream(self, fresh_logging):
        stream = StringIO()
        configure_logging(level="INFO", stream=stream)
        logger = get_logger("services.test")

        logger.debug("hidden")
        logger.info("shown", extra={"count": 3})

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [r["message"] for r in lines] == ["shown"]
        assert lines[0]["count"] == 3

    def test_idempotent(self, fresh_logging):
        first, second = StringIO(), StringIO()
        configure_logging(stream=first)
        configure_logging(stream=second)

        get_logger("services.test").warning("once")

        assert first.getvalue().count("once") == 1
        assert second.getvalue() == ""
        streams = [
            getattr(h, "stream", None)
            for h in logging.getLogger("cost_kernel").handlers
            if isinstance(h.formatter, StructuredFormatter)
        ]
        assert streams == [first]

    def test_does_not_propagate(self, fresh_logging):
        configure_logging(stream=StringIO())

        assert logging.getLogger("cost_kernel").propagate is False
