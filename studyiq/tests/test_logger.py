"""
Tests for the logging helpers.
"""

import json
import logging
from unittest.mock import MagicMock

import pytest

from studyiq.common.config import LoggingConfig
from studyiq.common.logger import (
    JsonFormatter,
    LoggerAdapter,
    ROOT_LOGGER_NAME,
    apply_logging_config,
    configure_logger,
    log_execution_time,
)


@pytest.fixture
def scratch_logger():
    name = f"{ROOT_LOGGER_NAME}.tests.scratch"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_json_formatter_keeps_context_apart():
    record = logging.LogRecord("studyiq.x", logging.INFO, __file__, 1, "generated %s", ("s-1",), None)
    record.context = {"user_id": "u-1"}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "generated s-1"
    assert payload["level"] == "INFO"
    assert payload["context"] == {"user_id": "u-1"}
    assert payload["timestamp"].endswith("+00:00")


def test_adapter_renders_and_attaches_context():
    adapter = LoggerAdapter(logging.getLogger("studyiq.tests"), {"user_id": "u-1"})
    scoped = adapter.with_context(session_id="s-1")

    msg, kwargs = scoped.process("submitted", {})

    assert msg == "submitted [user_id=u-1 session_id=s-1]"
    assert kwargs["extra"]["context"] == {"user_id": "u-1", "session_id": "s-1"}
    assert adapter.extra == {"user_id": "u-1"}


def test_configure_logger_replaces_handlers(tmp_path, scratch_logger):
    log_file = tmp_path / "logs" / "studyiq.log"

    configure_logger(level="debug", log_file=str(log_file), name=scratch_logger)
    logger = configure_logger(level="warning", use_json=True, log_file=str(log_file), name=scratch_logger)
    logger.warning("cache unavailable")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 2
    line = log_file.read_text().strip().splitlines()[-1]
    assert json.loads(line)["message"] == "cache unavailable"


def test_apply_logging_config():
    try:
        logger = apply_logging_config(LoggingConfig(level="error"))
        assert logger.name == ROOT_LOGGER_NAME
        assert logger.level == logging.ERROR
    finally:
        configure_logger()


def test_log_execution_time_sync():
    logger = MagicMock()

    @log_execution_time(logger)
    def double(x):
        return 2 * x

    assert double(4) == 8
    level, message = logger.log.call_args[0]
    assert level == logging.DEBUG
    assert "double finished in" in message


@pytest.mark.asyncio
async def test_log_execution_time_async_failure():
    logger = MagicMock()

    @log_execution_time(logger, level=logging.INFO)
    async def explode():
        raise KeyError("x")

    with pytest.raises(KeyError):
        await explode()

    level, message = logger.log.call_args[0]
    assert level == logging.INFO
    assert "explode raised KeyError" in message
