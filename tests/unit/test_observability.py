"""Unit tests for in-process latency and counter helpers."""

from __future__ import annotations

from foliosync.observability import counter_snapshot
from foliosync.observability import increment_counter
from foliosync.observability import latency_metrics_snapshot
from foliosync.observability import record_latency
from foliosync.observability import reset_metrics
from foliosync.observability import WINDOW_SIZE


class TestObservabilityLatency:
    def setup_method(self):
        reset_metrics()

    def teardown_method(self):
        reset_metrics()

    def test_records_latency_aggregates(self):
        record_latency(operation="sync.upload", duration_ms=10.0, ok=True)
        record_latency(operation="sync.upload", duration_ms=30.0, ok=False)

        metrics = latency_metrics_snapshot()["sync.upload"]
        assert metrics["count"] == 2
        assert metrics["error_count"] == 1
        assert metrics["avg_ms"] == 20.0
        assert metrics["min_ms"] == 10.0
        assert metrics["max_ms"] == 30.0

    def test_negative_durations_clamp_to_zero(self):
        record_latency(operation="clock.skew", duration_ms=-5.0)
        assert latency_metrics_snapshot()["clock.skew"]["max_ms"] == 0.0

    def test_reset_clears_all_metrics(self):
        record_latency(operation="sync.bulk_upload", duration_ms=12.0, ok=True)
        increment_counter("remote.retries")
        reset_metrics()
        assert latency_metrics_snapshot() == {}
        assert counter_snapshot() == {}


class TestObservabilityCounters:
    def setup_method(self):
        reset_metrics()

    def teardown_method(self):
        reset_metrics()

    def test_counters_accumulate(self):
        increment_counter("audit.write_failures")
        increment_counter("audit.write_failures", 2)
        increment_counter("security.findings")
        assert counter_snapshot() == {"audit.write_failures": 3, "security.findings": 1}


class TestObservabilityPercentiles:
    def setup_method(self):
        reset_metrics()

    def teardown_method(self):
        reset_metrics()

    def test_p95_tracks_the_slow_tail(self):
        for ms in range(1, 101):
            record_latency(operation="mcp.sync_portfolio", duration_ms=float(ms))
        metrics = latency_metrics_snapshot()["mcp.sync_portfolio"]
        assert metrics["p95_ms"] == 95.0
        assert metrics["min_ms"] == 1.0

    def test_window_is_bounded(self):
        for _ in range(WINDOW_SIZE + 50):
            record_latency(operation="sync.compare", duration_ms=1.0)
        record_latency(operation="sync.compare", duration_ms=500.0)
        metrics = latency_metrics_snapshot()["sync.compare"]
        assert metrics["count"] == WINDOW_SIZE + 51
        assert metrics["max_ms"] == 500.0
        assert metrics["p95_ms"] == 1.0
