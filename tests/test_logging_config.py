"""
Tests for shield_core.logging_config — formatters and key redaction.
"""

import json
import logging
import sys

import pytest

from shield_core.logging_config import (
    _HumanFormatter,
    _JSONFormatter,
    _RedactSpendingKeys,
    redact,
    setup_logging,
)

SECRET = "p-secret-spending-key-test1qqqsyqcyq5rqwzqfpg9scrgwpugpzysn"


def _record(msg, *args, exc_info=None):
    return logging.LogRecord("shield.test", logging.INFO, __file__, 1, msg, args, exc_info)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestRedact:

    def test_spending_key_masked(self):
        out = redact(f"loaded {SECRET} ok")
        assert "qqqsyqcyq5" not in out
        assert "p-secret-spending-key-test<redacted>" in out

    def test_extended_key_masked(self):
        out = redact("secret-extended-key-main1qqqsyqcyq5rqwzqf")
        assert out == "secret-extended-key-main<redacted>"

    def test_viewing_key_untouched(self):
        text = "ptestsapling1qqqsyqcyq5rqwzqfpg9scrgwpugpzysn"
        assert redact(text) == text

    def test_filter_rewrites_args(self):
        record = _record("key=%s", SECRET)
        assert _RedactSpendingKeys().filter(record) is True
        assert SECRET not in record.getMessage()
        assert record.args == ()

    def test_filter_leaves_clean_records(self):
        record = _record("height=%d", 5)
        _RedactSpendingKeys().filter(record)
        assert record.args == (5,)


class TestFormatters:

    def test_json_formatter(self):
        out = json.loads(_JSONFormatter().format(_record("hello %s", "world")))
        assert out["msg"] == "hello world"
        assert out["level"] == "INFO"
        assert out["logger"] == "shield.test"

    def test_json_formatter_redacts_exception(self):
        try:
            raise ValueError(f"bad key {SECRET}")
        except ValueError:
            record = _record("failed", exc_info=sys.exc_info())
        out = json.loads(_JSONFormatter().format(record))
        assert SECRET not in out["exception"]

    def test_human_formatter(self):
        line = _HumanFormatter().format(_record("synced"))
        assert "shield.test: synced" in line
        assert "INFO" in line


class TestSetupLogging:

    def test_handlers_installed(self, tmp_path):
        log_file = tmp_path / "logs" / "shield.log"
        setup_logging(level="debug", fmt="json", log_file=str(log_file))
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2
        assert all(
            any(isinstance(f, _RedactSpendingKeys) for f in h.filters) for h in root.handlers
        )
        assert log_file.parent.exists()
        assert logging.getLogger("aiohttp").level == logging.INFO

    def test_file_output_redacted(self, tmp_path):
        log_file = tmp_path / "shield.log"
        setup_logging(level="INFO", fmt="human", log_file=str(log_file))
        logging.getLogger("shield.test").info(f"spending key {SECRET}")
        for h in logging.getLogger().handlers:
            h.flush()
        content = log_file.read_text()
        assert "<redacted>" in content
        assert SECRET not in content
