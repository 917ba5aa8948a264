"""
Test metrics collection and log redaction.
"""
from unittest.mock import ANY, patch

import pytest

from resumail_core.observability.logs import redact_sensitive_data
from resumail_core.observability.metrics import MetricsCollector


@pytest.fixture
def metrics_collector():
    """Metrics collector instance."""
    return MetricsCollector()


def test_collectors_do_not_share_state():
    first, second = MetricsCollector(), MetricsCollector()
    first.record_run_total("ok")

    assert first.get_metric_value("runs_total", {"status": "ok"}) == 1.0
    assert second.get_metric_value("runs_total", {"status": "ok"}) == 0.0


def test_pipeline_counters(metrics_collector):
    metrics_collector.record_records(120)
    metrics_collector.record_batches(3)
    metrics_collector.record_oracle_call("classify", "ok", 250.0)
    metrics_collector.record_oracle_call("merge", "failed")
    metrics_collector.record_merge_rounds(2)
    metrics_collector.record_storage_error("save_mini")

    assert metrics_collector.get_metric_value("records_total") == 120.0
    assert metrics_collector.get_metric_value("batches_total") == 3.0
    assert metrics_collector.get_metric_value(
        "oracle_calls_total", {"role": "merge", "status": "failed"}
    ) == 1.0
    assert metrics_collector.get_metric_value("oracle_latency_ms_count") == 1.0
    assert metrics_collector.get_metric_value("merge_rounds_sum") == 2.0
    assert metrics_collector.get_metric_value(
        "storage_errors_total", {"operation": "save_mini"}
    ) == 1.0


def test_metrics_summary(metrics_collector):
    summary = metrics_collector.get_metrics_summary()
    assert "runs_total" in summary["metrics_available"]
    assert summary["port"] is None


def test_redacts_sensitive_fields():
    event = redact_sensitive_data(None, "info", {
        "event": "Oracle request",
        "token": "abc123",
        "authorization": "Bearer xyz",
    })

    assert event["token"] == "[[REDACTED]]"
    assert event["authorization"] == "[[REDACTED]]"
    assert event["event"] == "Oracle request"


def test_redacts_patterns_in_values():
    event = redact_sensitive_data(None, "info", {
        "event": "Failed for jane.doe@example.com",
        "error": "401 with key sk-abcdefghijklmnop1234",
        "count": 3,
    })

    assert "jane.doe@example.com" not in event["event"]
    assert "[[REDACTED]]" in event["event"]
    assert "sk-abcdefghijklmnop1234" not in event["error"]
    assert event["count"] == 3


def test_start_server_serves_private_registry(metrics_collector):
    with patch("resumail_core.observability.metrics.start_http_server") as start:
        assert metrics_collector.start_server(9200) is True

    start.assert_called_once_with(9200, registry=metrics_collector.registry)
    summary = metrics_collector.get_metrics_summary()
    assert summary["port"] == 9200
    assert "runs_total" in summary["metrics_available"]


def test_start_server_port_in_use(metrics_collector):
    with patch("resumail_core.observability.metrics.start_http_server",
               side_effect=OSError("Address already in use")) as start:
        assert metrics_collector.start_server(9200) is False

    start.assert_called_once_with(9200, registry=ANY)
    assert metrics_collector.get_metrics_summary()["port"] is None
