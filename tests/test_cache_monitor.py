"""
Unit tests for cache monitoring and logging context.
"""
import logging

import pytest
import structlog
from unittest.mock import MagicMock

from src.shared.cache_monitor import AlertSeverity, CacheMonitor, MetricsCacheMonitor, safe_emit
from src.shared.logging_config import CorrelationContext, CorrelationFilter, LoggingConfig, get_correlation_id


class TestMetricsCacheMonitor:
    """Test counters and alerting."""

    def test_read_metrics(self):
        monitor = MetricsCacheMonitor()
        monitor.record_hit("attendees", 2.0, 100)
        monitor.record_hit("attendees", 4.0, 50)
        monitor.record_miss("hotels", 3.0, "expired")
        monitor.record_corruption("sponsors", 3.0, ["Checksum mismatch - data may be corrupted"])

        metrics = monitor.get_metrics()

        assert metrics["cache_hits"] == 2
        assert metrics["cache_misses"] == 1
        assert metrics["corruptions"] == 1
        assert metrics["hit_rate"] == 50.0
        assert metrics["average_response_time_ms"] == 3.0
        assert metrics["data_volume_bytes"] == 150
        assert metrics["miss_reasons"] == {"expired": 1}

    def test_empty_metrics(self):
        metrics = MetricsCacheMonitor().get_metrics()
        assert metrics["hit_rate"] == 0.0
        assert metrics["average_response_time_ms"] == 0.0

    def test_writes_and_transitions(self):
        monitor = MetricsCacheMonitor()
        monitor.record_write("attendees", 10, True)
        monitor.record_write("attendees", 10, False, "quota exceeded")
        monitor.record_circuit_transition("cache_aside_hotels", "closed", "open")

        assert monitor.writes == 1
        assert monitor.write_failures == 1
        assert monitor.circuit_transitions[0]["to"] == "open"

    def test_alert_handlers(self):
        monitor = MetricsCacheMonitor()
        handler = MagicMock()
        monitor.add_alert_handler(MagicMock(side_effect=RuntimeError("pager down")))
        monitor.add_alert_handler(handler)

        monitor.alert(AlertSeverity.CRITICAL, "Policy bypass", "pending record cached", source="validator")

        handler.assert_called_once()
        alert = handler.call_args.args[0]
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.to_dict()["severity"] == "critical"

    def test_alert_history_bounded(self):
        monitor = MetricsCacheMonitor(max_alerts=2)
        for i in range(3):
            monitor.alert(AlertSeverity.LOW, f"alert {i}", "msg")

        assert [a.title for a in monitor.get_recent_alerts()] == ["alert 1", "alert 2"]

    def test_transition_history_bounded(self):
        monitor = MetricsCacheMonitor(max_transitions=2)
        for state in ("open", "half_open", "closed"):
            monitor.record_circuit_transition("cache_aside_hotels", "closed", state)

        assert [t["to"] for t in monitor.circuit_transitions] == ["half_open", "closed"]
        assert monitor.get_metrics()["circuit_transitions"] == 2

    def test_evicted_sizes_counted(self):
        monitor = MetricsCacheMonitor()
        monitor.record_miss("hotels", 1.0, "expired", 40)
        monitor.record_corruption("sponsors", 1.0, ["Invalid JSON"], 60)

        metrics = monitor.get_metrics()
        assert metrics["evicted_bytes"] == 100
        assert metrics["data_volume_bytes"] == 0


class TestSafeEmit:
    """Test monitor failures never escape."""

    def test_failing_monitor_is_ignored(self):
        monitor = MagicMock(spec=CacheMonitor)
        monitor.record_hit.side_effect = RuntimeError("broken")

        safe_emit(monitor, "record_hit", "k", 1.0, 1)

        monitor.record_hit.assert_called_once_with("k", 1.0, 1)

    def test_no_monitor(self):
        safe_emit(None, "record_hit", "k", 1.0, 1)


class TestCorrelationContext:
    """Test correlation ids are bound and restored."""

    def test_binds_and_resets(self):
        before = get_correlation_id()

        with CorrelationContext("sync-1", stage="fan_out") as context:
            assert get_correlation_id() == "sync-1"
            assert context.correlation_id_value == "sync-1"

        assert get_correlation_id() == before

    def test_generates_id(self):
        with CorrelationContext():
            assert get_correlation_id()

    def test_nested_contexts(self):
        with CorrelationContext("outer"):
            with CorrelationContext("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"


class TestLoggingConfig:
    """Test logging setup."""

    def test_setup_logging(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            LoggingConfig.setup_logging(level="DEBUG", format_type="console")

            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert any(isinstance(f, CorrelationFilter) for f in root.handlers[0].filters)
            assert logging.getLogger("aiohttp").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            structlog.reset_defaults()
