"""Unit tests for logging setup and run context."""

import json
import logging

from event_ingestion.monitoring.logging import (
    ROOT_LOGGER,
    JsonFormatter,
    LoggingOptions,
    TextFormatter,
    setup_logging,
    with_context,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("event_ingestion.test", logging.INFO, __file__, 1, "Run started", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_includes_context_and_payload(self):
        data = json.loads(
            JsonFormatter().format(_record(log_id=3, source="Arena Varberg", payload={"score": 80}))
        )
        assert data["message"] == "Run started"
        assert data["level"] == "INFO"
        assert data["log_id"] == 3
        assert data["source"] == "Arena Varberg"
        assert data["payload"] == {"score": 80}
        assert "step" not in data

    def test_text_includes_context(self):
        line = TextFormatter().format(_record(log_id=3, source="Arena Varberg"))
        assert "[log=3 source=Arena Varberg]" in line
        assert line.endswith("Run started")

    def test_text_without_context(self):
        line = TextFormatter().format(_record())
        assert "[" not in line


class TestSetup:
    def test_repeated_setup_keeps_one_handler(self):
        setup_logging(LoggingOptions(level="DEBUG"))
        logger = setup_logging(LoggingOptions(level="warning", json_logs=True))
        handlers = [h for h in logger.handlers if getattr(h, "_event_ingestion_handler", False)]
        try:
            assert len(handlers) == 1
            assert isinstance(handlers[0].formatter, JsonFormatter)
            assert logger.level == logging.WARNING
            assert logger.name == ROOT_LOGGER
        finally:
            for handler in handlers:
                logger.removeHandler(handler)
            logger.propagate = True
            logger.setLevel(logging.NOTSET)


def test_with_context_merges_extra():
    adapter = with_context(logging.getLogger("x"), log_id=1, source="A")
    _, kwargs = adapter.process("msg", {"extra": {"step": "importing"}})
    assert kwargs["extra"] == {"log_id": 1, "source": "A", "step": "importing"}
