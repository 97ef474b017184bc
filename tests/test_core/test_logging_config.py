import pytest
import logging
import json
import sys
from unittest.mock import Mock, patch

from core.logging_config import (
    APP_LOGGERS,
    ColoredConsoleFormatter,
    CorrelationFilter,
    JSONFormatter,
    get_correlation_id,
    get_logging_config,
    log_function_call,
    set_correlation_id,
    setup_logging,
)


def make_record(message="Test message", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="services.feed_cache",
        level=level,
        pathname="feed_cache.py",
        lineno=42,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLoggingConfig:
    """Test logging configuration dictionaries."""

    def test_development_uses_colored_console(self):
        config = get_logging_config("development", "debug")
        assert config["handlers"]["console"]["formatter"] == "colored_console"
        assert config["handlers"]["console"]["level"] == "DEBUG"

    def test_production_uses_json_and_file(self, monkeypatch):
        monkeypatch.setenv("LOG_FILE", "/tmp/videofeed-test.log")
        config = get_logging_config("production", "INFO")

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["handlers"]["file"]["filename"] == "/tmp/videofeed-test.log"
        assert "file" in config["root"]["handlers"]

    def test_app_loggers_do_not_propagate(self):
        config = get_logging_config("development", "INFO")
        for name in APP_LOGGERS:
            assert config["loggers"][name]["propagate"] is False
            assert config["loggers"][name]["level"] == "INFO"

    def test_third_party_loggers_stay_at_info(self):
        config = get_logging_config("development", "DEBUG")
        assert config["loggers"]["apscheduler"]["level"] == "INFO"
        assert config["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"

    def test_reads_environment_when_not_given(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "staging")
        monkeypatch.setenv("LOG_LEVEL", "warning")
        config = get_logging_config()
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["root"]["level"] == "WARNING"

    def test_setup_logging_applies_config(self):
        with patch("core.logging_config.logging.config.dictConfig") as dict_config:
            setup_logging("development", "INFO")
        applied = dict_config.call_args[0][0]
        assert applied["handlers"]["console"]["formatter"] == "colored_console"


class TestCorrelation:
    """Test correlation ID propagation."""

    def test_set_and_get(self):
        set_correlation_id("req-123")
        assert get_correlation_id() == "req-123"
        set_correlation_id(None)
        assert get_correlation_id() is None

    def test_filter_copies_correlation_id(self):
        set_correlation_id("req-456")
        record = make_record()
        assert CorrelationFilter().filter(record) is True
        assert record.correlation_id == "req-456"
        set_correlation_id(None)

    def test_filter_leaves_record_alone_without_id(self):
        set_correlation_id(None)
        record = make_record()
        CorrelationFilter().filter(record)
        assert not hasattr(record, "correlation_id")


class TestFormatters:
    """Test log formatters."""

    def test_json_formatter(self):
        record = make_record(correlation_id="req-1", video_id="abc")

        log_data = json.loads(JSONFormatter().format(record))

        assert log_data["level"] == "INFO"
        assert log_data["message"] == "Test message"
        assert log_data["logger"] == "services.feed_cache"
        assert log_data["correlation_id"] == "req-1"
        assert log_data["extra"] == {"video_id": "abc"}

    def test_json_formatter_with_exception(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        log_data = json.loads(JSONFormatter().format(record))

        assert log_data["exception"]["type"] == "ValueError"
        assert log_data["exception"]["message"] == "bad value"

    def test_colored_console_formatter(self):
        formatted = ColoredConsoleFormatter().format(make_record(correlation_id="req-9"))

        assert "Test message" in formatted
        assert "[req-9]" in formatted
        assert "\033[32m" in formatted  # Green for INFO


class TestLogFunctionCall:
    """Test the entry/exit logging decorator."""

    @pytest.mark.asyncio
    async def test_async_function(self):
        logger = Mock()

        @log_function_call(logger)
        async def get_feed_page(page):
            return page * 2

        assert await get_feed_page(3) == 6
        assert logger.debug.call_count == 2

    @pytest.mark.asyncio
    async def test_async_failure_is_logged_and_reraised(self):
        logger = Mock()

        @log_function_call(logger)
        async def upload():
            raise RuntimeError("provider down")

        with pytest.raises(RuntimeError):
            await upload()
        logger.warning.assert_called_once()
        assert logger.warning.call_args[1]["extra"]["error_type"] == "RuntimeError"

    def test_sync_function(self):
        logger = Mock()

        @log_function_call(logger)
        def compute(x):
            return x + 1

        assert compute(1) == 2
        assert logger.debug.call_count == 2

    def test_preserves_name(self):
        @log_function_call(Mock())
        async def track_view():
            pass

        assert track_view.__name__ == "track_view"
