"""
Tests for structured logging setup and the metrics exporter.
"""

import json
import logging
from unittest.mock import patch

import pytest
import structlog

from pageidentity.config import MonitoringConfig
from pageidentity.observability import METRICS, MetricsManager, configure_logging
from pageidentity.observability.metrics import Counter


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.mark.unit
class TestConfigureLogging:
    """Test configure_logging."""

    def test_json_file_output(self, temp_dir, restore_logging):
        log_file = temp_dir / "logs" / "pageidentity.log"
        configure_logging(MonitoringConfig(log_level="INFO", log_file=str(log_file)))

        structlog.contextvars.bind_contextvars(request_id="req-1")
        structlog.get_logger("tests.logging").info("page_identity.resolve.start", normalized_url="https://a.com/x")

        lines = [json.loads(line) for line in log_file.read_text().splitlines() if line.strip()]
        record = next(line for line in lines if line["event"] == "page_identity.resolve.start")
        assert record["normalized_url"] == "https://a.com/x"
        assert record["request_id"] == "req-1"
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filters_records(self, temp_dir, restore_logging):
        log_file = temp_dir / "quiet.log"
        configure_logging(MonitoringConfig(log_level="WARNING", log_file=str(log_file)))

        logger = structlog.get_logger("tests.logging")
        logger.info("hidden")
        logger.warning("shown")

        events = [json.loads(line)["event"] for line in log_file.read_text().splitlines() if line.strip()]
        assert events == ["shown"]

    def test_stdlib_records_share_the_pipeline(self, temp_dir, restore_logging):
        log_file = temp_dir / "stdlib.log"
        configure_logging(MonitoringConfig(log_level="INFO", log_file=str(log_file)))

        logging.getLogger("tests.stdlib").warning("plain %s", "message")

        record = json.loads(log_file.read_text().splitlines()[-1])
        assert record["event"] == "plain message"
        assert record["logger"] == "tests.stdlib"


@pytest.mark.unit
class TestMetrics:
    """Test metric registration and the exporter."""

    def test_metrics_registered(self):
        assert {"resolutions_total", "resolution_latency_seconds", "captures_total", "reconciled_total"} <= set(METRICS)

    def test_duplicate_registration_reuses_collector(self):
        again = Counter("pageidentity_reconciled_total", "Duplicate page identity records folded into a survivor")
        assert again is METRICS["reconciled_total"]

    def test_exporter_disabled_without_port(self):
        with patch("pageidentity.observability.metrics.start_http_server") as start:
            MetricsManager(MonitoringConfig()).start()
        start.assert_not_called()

    def test_exporter_started_once(self):
        manager = MetricsManager(MonitoringConfig(prometheus_port=9109))
        with patch("pageidentity.observability.metrics.start_http_server") as start:
            manager.start()
            manager.start()
        start.assert_called_once_with(9109)
