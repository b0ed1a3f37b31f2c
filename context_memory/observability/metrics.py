"""
Metrics collection for the context memory.

Counters, gauges and histograms kept in process, tracking how the store
grows, how often it evicts, and how long maintenance takes.
"""

import statistics
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class MetricType(str, Enum):
    """Type of metric."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    """A single metric value with timestamp."""
    value: float
    timestamp: datetime = field(default_factory=datetime.now)
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """A tracked metric and the values recorded for it."""

    name: str
    type: MetricType
    description: str = ""
    unit: str = ""
    values: List[MetricValue] = field(default_factory=list)

    # For histograms
    buckets: List[float] = field(default_factory=lambda: [0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0])

    def record(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a metric value."""
        self.values.append(MetricValue(
            value=value,
            labels=labels or {},
        ))

    def get_current_value(self) -> Optional[float]:
        """Get the most recent value."""
        if self.values:
            return self.values[-1].value
        return None

    def get_sum(self, labels: Optional[Dict[str, str]] = None) -> float:
        """Sum of recorded values, optionally only those carrying the given labels."""
        if not labels:
            return sum(v.value for v in self.values)
        return sum(
            v.value for v in self.values
            if all(v.labels.get(k) == val for k, val in labels.items())
        )

    def get_average(self) -> Optional[float]:
        if self.values:
            return statistics.mean(v.value for v in self.values)
        return None

    def get_percentile(self, percentile: float) -> Optional[float]:
        """Get a percentile value (0-100)."""
        if not self.values:
            return None
        sorted_values = sorted(v.value for v in self.values)
        index = int(len(sorted_values) * percentile / 100)
        return sorted_values[min(index, len(sorted_values) - 1)]

    def get_histogram_buckets(self) -> Dict[str, int]:
        bucket_counts = {f"le_{b}": 0 for b in self.buckets}
        bucket_counts["le_inf"] = 0

        for metric_value in self.values:
            for bucket in self.buckets:
                if metric_value.value <= bucket:
                    bucket_counts[f"le_{bucket}"] += 1
            bucket_counts["le_inf"] += 1

        return bucket_counts

    def to_dict(self) -> Dict[str, Any]:
        """Convert metric to dictionary."""
        base = {
            "name": self.name,
            "type": self.type.value,
            "description": self.description,
            "unit": self.unit,
            "value_count": len(self.values),
        }

        if self.type == MetricType.COUNTER:
            base["sum"] = self.get_sum()
        elif self.type == MetricType.GAUGE:
            base["current"] = self.get_current_value()
        elif self.type == MetricType.HISTOGRAM:
            base["buckets"] = self.get_histogram_buckets()
            base["average"] = self.get_average()
            base["p50"] = self.get_percentile(50)
            base["p95"] = self.get_percentile(95)

        return base


class MetricsCollector:
    """
    Central collector for context memory metrics.

    Usage:
        collector = MetricsCollector()

        collector.increment_counter("items_evicted_total", labels={"reason": "capacity"})
        collector.set_gauge("items", 42)

        summary = collector.get_summary()
    """

    def __init__(self, prefix: str = "context_memory"):
        self.prefix = prefix
        self._metrics: Dict[str, Metric] = {}
        self._setup_default_metrics()

    def _setup_default_metrics(self) -> None:
        """Set up the metrics every component reports into."""
        self._create_metric(
            "items_upserted_total",
            MetricType.COUNTER,
            "Upserts, labelled by outcome (created or reinforced)",
        )
        self._create_metric(
            "items_evicted_total",
            MetricType.COUNTER,
            "Items removed by capacity or retention, labelled by reason",
        )
        self._create_metric(
            "items_accessed_total",
            MetricType.COUNTER,
            "Items returned by the relevance ranker",
        )
        self._create_metric(
            "items",
            MetricType.GAUGE,
            "Current number of stored items",
        )
        self._create_metric(
            "maintenance_duration_seconds",
            MetricType.HISTOGRAM,
            "Full maintenance duration in seconds",
            "seconds",
        )
        self._create_metric(
            "extraction_errors_total",
            MetricType.COUNTER,
            "Signal extraction failures that were logged and skipped",
        )

    def _create_metric(
        self,
        name: str,
        metric_type: MetricType,
        description: str = "",
        unit: str = "",
    ) -> Metric:
        full_name = f"{self.prefix}_{name}"
        metric = Metric(
            name=full_name,
            type=metric_type,
            description=description,
            unit=unit,
        )
        self._metrics[full_name] = metric
        return metric

    def get_or_create_metric(
        self,
        name: str,
        metric_type: MetricType,
        description: str = "",
        unit: str = "",
    ) -> Metric:
        """Get an existing metric or create a new one."""
        full_name = f"{self.prefix}_{name}"
        if full_name not in self._metrics:
            return self._create_metric(name, metric_type, description, unit)
        return self._metrics[full_name]

    def increment_counter(
        self,
        name: str,
        value: float = 1.0,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Increment a counter metric."""
        metric = self.get_or_create_metric(name, MetricType.COUNTER)
        metric.record(value, labels)

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Set a gauge metric value."""
        metric = self.get_or_create_metric(name, MetricType.GAUGE)
        metric.record(value, labels)

    def record_histogram(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record a histogram value."""
        metric = self.get_or_create_metric(name, MetricType.HISTOGRAM)
        metric.record(value, labels)

    def get_metric(self, name: str) -> Optional[Metric]:
        """Get a metric by name."""
        return self._metrics.get(f"{self.prefix}_{name}")

    def get_all_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get all metrics as dictionaries."""
        return {name: metric.to_dict() for name, metric in self._metrics.items()}

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of key metrics."""
        upserts = self.get_metric("items_upserted_total")
        evictions = self.get_metric("items_evicted_total")
        accesses = self.get_metric("items_accessed_total")
        items = self.get_metric("items")
        maintenance = self.get_metric("maintenance_duration_seconds")

        return {
            "items_created": int(upserts.get_sum({"outcome": "created"})),
            "items_reinforced": int(upserts.get_sum({"outcome": "reinforced"})),
            "items_evicted": int(evictions.get_sum()),
            "items_accessed": int(accesses.get_sum()),
            "current_items": items.get_current_value() or 0,
            "maintenance_runs": len(maintenance.values),
            "avg_maintenance_seconds": maintenance.get_average() or 0,
        }

    def clear(self) -> None:
        """Clear all metric values."""
        for metric in self._metrics.values():
            metric.values.clear()


class Timer:
    """Context manager for timing code blocks."""

    def __init__(
        self,
        collector: MetricsCollector,
        metric_name: str,
        labels: Optional[Dict[str, str]] = None,
    ):
        self.collector = collector
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float = 0
        self.duration: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time
        self.collector.record_histogram(self.metric_name, self.duration, self.labels)
        return False
