"""Logging setup."""
import json
import logging

import pytest

from intent.logging_config import JsonFormatter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in list(root.handlers):
        if getattr(handler, "_intent_handler", False):
            root.removeHandler(handler)
    root.setLevel(level)


def test_json_formatter():
    record = logging.LogRecord("intent.test", logging.WARNING, __file__, 1, "dropped %s ids", ("2",), None)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "intent.test"
    assert payload["message"] == "dropped 2 ids"
    assert "ts" in payload


def test_setup_logging_is_idempotent(restore_root_logger):
    root = restore_root_logger
    before = len(root.handlers)

    setup_logging(level="debug", fmt="text")
    setup_logging(level="info", fmt="json")

    added = [h for h in root.handlers if getattr(h, "_intent_handler", False)]
    assert len(added) == 1
    assert len(root.handlers) == before + 1
    assert isinstance(added[0].formatter, JsonFormatter)
    assert root.level == logging.INFO
    assert logging.getLogger("openai").level == logging.WARNING
