"""Local telemetry for codeindex."""

from codeindex.metrics.telemetry import CODE_INDEX_ERROR, MetricType, TelemetryCollector

__all__ = [
    "CODE_INDEX_ERROR",
    "MetricType",
    "TelemetryCollector",
]
