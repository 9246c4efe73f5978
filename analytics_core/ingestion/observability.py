"""
Per-run ingestion metrics exported through the OpenTelemetry meter API.

Without an SDK MeterProvider configured these instruments are no-ops.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict

from opentelemetry import metrics


@dataclass(frozen=True)
class PipelineMetricPayload:
    """Metrics emitted once per completed pipeline invocation."""
    pipeline: str
    windows_processed: int
    records_processed: int
    telemetry_events: int
    duration_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


MetricsRecorder = Callable[[PipelineMetricPayload], None]


class PipelineMetrics:
    """Counters and a duration histogram, attributed by pipeline name."""

    def __init__(self, meter_name: str = "analytics-ingestion"):
        meter = metrics.get_meter(meter_name)

        self._invocations = meter.create_counter(
            "analytics_ingestion_invocations",
            description="Count of analytics ingestion pipeline invocations",
        )
        self._windows = meter.create_counter(
            "analytics_ingestion_windows_processed",
            description="Number of ingestion windows processed per pipeline run",
        )
        self._records = meter.create_counter(
            "analytics_ingestion_records_processed",
            description="Number of analytics records persisted per pipeline run",
        )
        self._telemetry = meter.create_counter(
            "analytics_ingestion_telemetry_events",
            description="Total telemetry events scanned during ingestion runs",
        )
        self._duration = meter.create_histogram(
            "analytics_ingestion_duration_ms",
            description="Pipeline invocation duration in milliseconds",
            unit="ms",
        )

    def record_pipeline_metrics(self, payload: PipelineMetricPayload) -> None:
        """Record one completed invocation."""
        attributes = {"pipeline": payload.pipeline}

        self._invocations.add(1, attributes)

        if payload.windows_processed > 0:
            self._windows.add(payload.windows_processed, attributes)
        if payload.records_processed > 0:
            self._records.add(payload.records_processed, attributes)
        if payload.telemetry_events > 0:
            self._telemetry.add(payload.telemetry_events, attributes)
        if payload.duration_ms >= 0:
            self._duration.record(payload.duration_ms, attributes)

    __call__ = record_pipeline_metrics
