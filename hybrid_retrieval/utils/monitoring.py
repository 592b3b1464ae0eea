"""In-process metrics collection for the hybrid retrieval core."""

import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union
import numpy as np

from ..config.settings import get_monitoring_config
from ..utils.logging import get_logger


logger = get_logger(__name__)


@dataclass
class MetricPoint:
    """Represents a single metric data point."""
    timestamp: datetime
    value: Union[float, int]
    labels: Dict[str, str] = field(default_factory=dict)


class MetricsCollector:
    """Collects and aggregates search metrics."""

    def __init__(self, max_history: Optional[int] = None, enabled: Optional[bool] = None):
        """Initialize metrics collector.

        Args:
            max_history: Maximum number of metric points to keep in memory
            enabled: Record nothing when False
        """
        monitoring_config = get_monitoring_config()
        self.max_history = max_history or monitoring_config.get("max_history", 1000)
        self.enabled = enabled if enabled is not None else monitoring_config.get("enabled", True)
        self._metrics_history: Dict[str, deque] = defaultdict(lambda: deque(maxlen=self.max_history))
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = defaultdict(float)
        self._histograms: Dict[str, deque] = defaultdict(lambda: deque(maxlen=self.max_history))
        self._lock = threading.RLock()

        logger.debug(f"MetricsCollector initialized with max_history={self.max_history}")

    def record_metric(self, name: str, value: Union[float, int],
                      labels: Optional[Dict[str, str]] = None) -> None:
        """Record a metric value.

        Args:
            name: Metric name
            value: Metric value
            labels: Optional labels for the metric
        """
        if not self.enabled:
            return
        with self._lock:
            self._metrics_history[name].append(
                MetricPoint(timestamp=datetime.now(), value=value, labels=labels or {})
            )

    def increment_counter(self, name: str, value: int = 1) -> None:
        """Increment a counter metric."""
        if not self.enabled:
            return
        with self._lock:
            self._counters[name] += value
            self.record_metric(f"{name}_total", self._counters[name])

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge metric value."""
        if not self.enabled:
            return
        with self._lock:
            self._gauges[name] = value
            self.record_metric(name, value)

    def record_histogram(self, name: str, value: float) -> None:
        """Record a value in a histogram."""
        if not self.enabled:
            return
        with self._lock:
            self._histograms[name].append(value)

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def get_gauge(self, name: str) -> Optional[float]:
        with self._lock:
            return self._gauges.get(name)

    def get_histogram_summary(self, name: str) -> Dict[str, Any]:
        """Get summary statistics for a histogram.

        Args:
            name: Histogram name

        Returns:
            Dictionary containing histogram statistics
        """
        with self._lock:
            if name not in self._histograms or not self._histograms[name]:
                return {}

            values = np.asarray(self._histograms[name], dtype=float)

            return {
                "count": int(values.size),
                "mean": float(np.mean(values)),
                "median": float(np.median(values)),
                "std": float(np.std(values)),
                "min": float(np.min(values)),
                "max": float(np.max(values)),
                "p95": float(np.percentile(values, 95)),
                "p99": float(np.percentile(values, 99))
            }

    @contextmanager
    def time_operation(self, operation_name: str):
        """Context manager to measure operation duration.

        Records ``<operation>_duration`` and a success or error counter.

        Args:
            operation_name: Name of the operation
        """
        start_time = time.perf_counter()
        try:
            yield
        except BaseException:
            self.record_histogram(f"{operation_name}_duration", time.perf_counter() - start_time)
            self.increment_counter(f"{operation_name}_error")
            raise
        self.record_histogram(f"{operation_name}_duration", time.perf_counter() - start_time)
        self.increment_counter(f"{operation_name}_success")

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all current metrics.

        Returns:
            Dictionary containing all metrics
        """
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {
                    name: self.get_histogram_summary(name)
                    for name in list(self._histograms.keys())
                },
                "timestamp": datetime.now().isoformat()
            }

    def reset_metrics(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._metrics_history.clear()
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            logger.info("All metrics reset")
