"""Tests for in-process metrics collection."""

import asyncio

import pytest

from hybrid_retrieval.utils.monitoring import MetricsCollector


class TestMetricsCollector:
    """Test cases for MetricsCollector."""

    def test_initialization(self):
        """Test metrics collector initialization."""
        collector = MetricsCollector(max_history=500, enabled=True)
        assert collector.max_history == 500
        assert len(collector._metrics_history) == 0
        assert len(collector._counters) == 0
        assert len(collector._gauges) == 0

    def test_record_metric(self):
        collector = MetricsCollector(enabled=True)

        collector.record_metric("result_count", 7, {"strategy": "SIMPLE"})

        point = collector._metrics_history["result_count"][0]
        assert point.value == 7
        assert point.labels == {"strategy": "SIMPLE"}

    def test_increment_counter(self):
        """Test counter increment."""
        collector = MetricsCollector(enabled=True)

        collector.increment_counter("searches", 5)
        collector.increment_counter("searches", 3)

        assert collector.get_counter("searches") == 8
        assert collector.get_counter("missing") == 0
        assert "searches_total" in collector._metrics_history

    def test_set_gauge(self):
        collector = MetricsCollector(enabled=True)
        collector.set_gauge("cache_size", 12)
        collector.set_gauge("cache_size", 10)

        assert collector.get_gauge("cache_size") == 10
        assert collector.get_gauge("missing") is None

    def test_histogram_summary(self):
        """Test histogram summary statistics."""
        collector = MetricsCollector(enabled=True)
        for value in (1.0, 2.0, 3.0, 4.0):
            collector.record_histogram("latency", value)

        summary = collector.get_histogram_summary("latency")

        assert summary["count"] == 4
        assert summary["mean"] == pytest.approx(2.5)
        assert summary["median"] == pytest.approx(2.5)
        assert summary["min"] == 1.0
        assert summary["max"] == 4.0
        assert collector.get_histogram_summary("missing") == {}

    def test_history_is_bounded(self):
        collector = MetricsCollector(max_history=3, enabled=True)
        for value in range(10):
            collector.record_histogram("latency", float(value))
        assert collector.get_histogram_summary("latency")["count"] == 3

    def test_time_operation_success(self):
        collector = MetricsCollector(enabled=True)

        with collector.time_operation("search"):
            pass

        assert collector.get_counter("search_success") == 1
        assert collector.get_counter("search_error") == 0
        assert collector.get_histogram_summary("search_duration")["count"] == 1

    def test_time_operation_error(self):
        """Test that a failing operation is timed and counted as an error."""
        collector = MetricsCollector(enabled=True)

        with pytest.raises(RuntimeError):
            with collector.time_operation("search"):
                raise RuntimeError("boom")

        assert collector.get_counter("search_error") == 1
        assert collector.get_counter("search_success") == 0
        assert collector.get_histogram_summary("search_duration")["count"] == 1

    @pytest.mark.asyncio
    async def test_time_operation_cancelled(self):
        collector = MetricsCollector(enabled=True)

        async def operation():
            with collector.time_operation("search"):
                await asyncio.sleep(5)

        task = asyncio.create_task(operation())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert collector.get_counter("search_error") == 1

    def test_disabled_collector_records_nothing(self):
        collector = MetricsCollector(enabled=False)

        collector.increment_counter("searches")
        collector.set_gauge("cache_size", 3)
        collector.record_histogram("latency", 1.0)
        with collector.time_operation("search"):
            pass

        metrics = collector.get_all_metrics()
        assert metrics["counters"] == {}
        assert metrics["gauges"] == {}
        assert metrics["histograms"] == {}

    def test_get_all_metrics_and_reset(self):
        """Test the metrics snapshot and reset."""
        collector = MetricsCollector(enabled=True)
        collector.increment_counter("searches")
        collector.set_gauge("cache_size", 2)
        collector.record_histogram("latency", 0.5)

        metrics = collector.get_all_metrics()
        assert metrics["counters"] == {"searches": 1}
        assert metrics["gauges"] == {"cache_size": 2}
        assert metrics["histograms"]["latency"]["count"] == 1
        assert "timestamp" in metrics

        collector.reset_metrics()
        assert collector.get_all_metrics()["counters"] == {}
