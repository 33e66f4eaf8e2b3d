"""Tests for structlog configuration helpers."""

import json
import logging

import structlog

from aoconnect.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


class TestConfigureLogging:
    def test_json_output_has_ecs_fields(self, capsys):
        configure_logging(level="INFO", json_format=True, service="aoconnect-test")
        get_logger("aoconnect.test").info("message_dispatched", message_id="M")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "message_dispatched"
        assert record["message_id"] == "M"
        assert record["log.level"] == "info"
        assert record["service.name"] == "aoconnect-test"
        assert "@timestamp" in record

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("aoconnect.test").info("hidden_event")
        assert "hidden_event" not in capsys.readouterr().err

    def teardown_method(self):
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()


class TestLogContext:
    def teardown_method(self):
        clear_context()

    def test_binds_and_unbinds(self):
        with LogContext(operation="spawn", module_id="M"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["operation"] == "spawn"
            assert bound["module_id"] == "M"
        assert "operation" not in structlog.contextvars.get_contextvars()

    async def _inside(self):
        async with LogContext(process_id="P"):
            return dict(structlog.contextvars.get_contextvars())

    def test_async_form(self):
        import asyncio

        bound = asyncio.run(self._inside())
        assert bound["process_id"] == "P"
        assert "process_id" not in structlog.contextvars.get_contextvars()

    def test_bind_context(self):
        bind_context(request="r1")
        assert structlog.contextvars.get_contextvars()["request"] == "r1"
