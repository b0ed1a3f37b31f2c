"""
Observability for the context memory - metrics and structured logging.
"""

from .metrics import (
    MetricsCollector,
    MetricType,
    Metric,
    Timer,
)
from .logging import (
    StructuredLogger,
    StructuredFormatter,
    LogLevel,
    configure_logging,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "MetricType",
    "Metric",
    "Timer",
    # Logging
    "StructuredLogger",
    "StructuredFormatter",
    "LogLevel",
    "configure_logging",
]
