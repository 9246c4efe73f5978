"""
Anomaly detection over agent performance and quality score metrics.

Each stage seen in the current window is compared with the immediately
preceding window of equal length (the baseline):

- success rate below `critical_success_rate` -> critical
- latency above baseline mean + k * stddev -> warning
  (mean * warning_latency_factor when the baseline stddev is zero)
- quality score below baseline mean - k * stddev -> warning
  (mean / warning_latency_factor when the baseline stddev is zero)

Baseline statistics use the population standard deviation and are only
consulted once a stage has at least `min_samples` baseline rows.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from analytics_core.ingestion.constants import AnalyticsPipeline
from analytics_core.ingestion.pipelines.base import BasePipeline, clean_key
from analytics_core.ingestion.types import PipelineContext, PipelineResult
from analytics_core.storage.records import (
    AgentPerformanceMetric,
    AnomalyRecord,
    AnomalySeverity,
    QualityScoreObservation,
)

if TYPE_CHECKING:
    from opentelemetry.trace import Span

    from analytics_core.config import AnalyticsConfig

logger = logging.getLogger(__name__)

NO_METRICS_WARNING = "No metrics recorded during ingestion window; anomaly detection skipped."


def _clamp(value: float, lower: float, upper: float) -> float:
    return min(max(value, lower), upper)


@dataclass
class StageSnapshot:
    """Current-window aggregate for one stage."""
    success_rate: float = 0.0
    fallback_rate: float = 0.0
    human_hand_off_rate: float = 0.0
    avg_latency_ms: float = 0.0
    tasks_processed: int = 0
    samples: int = 0
    quality_score: Optional[float] = None


@dataclass
class StageBaseline:
    """Baseline-window samples for one stage."""
    success_rates: List[float] = field(default_factory=list)
    latencies: List[float] = field(default_factory=list)
    quality_scores: List[float] = field(default_factory=list)
    tasks: int = 0


@dataclass(frozen=True)
class BaselineStats:
    mean: float
    std: float
    samples: int


def baseline_stats(values: Sequence[float]) -> Optional[BaselineStats]:
    """Population mean and standard deviation; None for no samples."""
    if not values:
        return None
    mean = statistics.fmean(values)
    std = statistics.pstdev(values, mu=mean) if len(values) > 1 else 0.0
    return BaselineStats(mean=mean, std=std, samples=len(values))


def _weighted(rows: Sequence[AgentPerformanceMetric], attr: str) -> float:
    """Task-weighted mean; plain mean when no tasks were reported."""
    total_tasks = sum(max(row.tasks_processed, 0) for row in rows)
    if total_tasks > 0:
        return sum(getattr(row, attr) * max(row.tasks_processed, 0) for row in rows) / total_tasks
    return statistics.fmean(getattr(row, attr) for row in rows)


def summarize_current(
    performance: Sequence[AgentPerformanceMetric],
    quality: Sequence[QualityScoreObservation],
) -> Dict[str, StageSnapshot]:
    """Group current-window rows by stage, preserving first-seen order."""
    by_stage: Dict[str, List[AgentPerformanceMetric]] = {}
    for row in performance:
        stage = clean_key(row.agent_stage)
        if stage:
            by_stage.setdefault(stage, []).append(row)

    snapshots: Dict[str, StageSnapshot] = {}
    for stage, rows in by_stage.items():
        snapshots[stage] = StageSnapshot(
            success_rate=_weighted(rows, "success_rate"),
            fallback_rate=_weighted(rows, "fallback_rate"),
            human_hand_off_rate=_weighted(rows, "human_hand_off_rate"),
            avg_latency_ms=_weighted(rows, "avg_latency_ms"),
            tasks_processed=sum(max(row.tasks_processed, 0) for row in rows),
            samples=len(rows),
        )

    scores: Dict[str, List[float]] = {}
    for observation in quality:
        stage = clean_key(observation.agent_stage)
        if stage in snapshots:
            scores.setdefault(stage, []).append(observation.score)

    for stage, values in scores.items():
        snapshots[stage].quality_score = statistics.fmean(values)

    return snapshots


def summarize_baseline(
    performance: Sequence[AgentPerformanceMetric],
    quality: Sequence[QualityScoreObservation],
) -> Dict[str, StageBaseline]:
    """Group baseline rows by stage."""
    baselines: Dict[str, StageBaseline] = {}

    for row in performance:
        stage = clean_key(row.agent_stage)
        if not stage:
            continue
        baseline = baselines.setdefault(stage, StageBaseline())
        baseline.tasks += max(row.tasks_processed, 0)
        baseline.success_rates.append(_clamp(row.success_rate, 0.0, 1.0))
        baseline.latencies.append(max(row.avg_latency_ms, 0.0))

    for observation in quality:
        stage = clean_key(observation.agent_stage)
        if not stage:
            continue
        baselines.setdefault(stage, StageBaseline()).quality_scores.append(
            _clamp(observation.score, 0.0, 100.0)
        )

    return baselines


class AnomalyDetectionPipeline(BasePipeline):
    """Detects per-stage regressions and records one anomaly per affected stage."""

    name = AnalyticsPipeline.ANOMALIES.value
    description = (
        "Detects anomalies across agent performance and quality metrics "
        "and records alert metadata."
    )

    def __init__(self, config: "AnalyticsConfig"):
        super().__init__(config)
        config.anomalies.validate()
        self.thresholds = config.anomalies

    def _latency_threshold(self, stats: BaselineStats) -> Optional[float]:
        if stats.std > 0:
            return stats.mean + self.thresholds.std_deviations * stats.std
        if stats.mean > 0:
            return stats.mean * self.thresholds.warning_latency_factor
        return None

    def _quality_threshold(self, stats: BaselineStats) -> Optional[float]:
        if stats.std > 0:
            return stats.mean - self.thresholds.std_deviations * stats.std
        if stats.mean > 0:
            return stats.mean / self.thresholds.warning_latency_factor
        return None

    def evaluate_stage(
        self,
        stage: str,
        snapshot: StageSnapshot,
        baseline: Optional[StageBaseline],
        warnings: List[str],
    ) -> tuple[Optional[AnomalySeverity], List[str]]:
        """Return the severity (None when healthy) and human-readable triggers."""
        thresholds = self.thresholds
        triggers: List[str] = []
        severity: Optional[AnomalySeverity] = None

        if snapshot.success_rate < thresholds.critical_success_rate:
            severity = AnomalySeverity.CRITICAL
            triggers.append(
                f"Success rate {snapshot.success_rate * 100:.2f}% fell below critical "
                f"threshold {thresholds.critical_success_rate * 100:.2f}%."
            )

        latency_stats = baseline_stats(baseline.latencies) if baseline else None
        if latency_stats and latency_stats.samples >= thresholds.min_samples:
            limit = self._latency_threshold(latency_stats)
            if limit is not None and snapshot.avg_latency_ms > limit:
                triggers.append(
                    f"Latency {snapshot.avg_latency_ms:.0f}ms exceeded baseline "
                    f"{latency_stats.mean:.0f}ms (threshold {limit:.0f}ms)."
                )
                severity = severity or AnomalySeverity.WARNING
        else:
            samples = latency_stats.samples if latency_stats else 0
            warnings.append(
                f"Baseline metrics for stage {stage} have insufficient samples "
                f"({samples} < {thresholds.min_samples}); statistical checks skipped."
            )

        quality_stats = baseline_stats(baseline.quality_scores) if baseline else None
        if (
            snapshot.quality_score is not None
            and quality_stats
            and quality_stats.samples >= thresholds.min_samples
        ):
            limit = self._quality_threshold(quality_stats)
            if limit is not None and snapshot.quality_score < limit:
                triggers.append(
                    f"Quality score {snapshot.quality_score:.2f} dropped below baseline "
                    f"{quality_stats.mean:.2f} (threshold {limit:.2f})."
                )
                severity = severity or AnomalySeverity.WARNING

        return severity, triggers

    async def _execute(self, context: PipelineContext, span: "Span") -> PipelineResult:
        window = context.window
        store = context.store
        baseline_start = window.start - (window.end - window.start)

        (
            current_performance,
            baseline_performance,
            current_quality,
            baseline_quality,
        ) = await asyncio.gather(
            store.fetch_agent_performance(window.start, window.end),
            store.fetch_agent_performance(baseline_start, window.start),
            store.fetch_quality_observations(window.start, window.end),
            store.fetch_quality_observations(baseline_start, window.start),
        )

        scanned = (
            len(current_performance)
            + len(baseline_performance)
            + len(current_quality)
            + len(baseline_quality)
        )

        if not current_performance:
            span.add_event("No metrics available for anomaly detection")
            return PipelineResult(
                pipeline=self.name,
                records_processed=0,
                telemetry_events_scanned=scanned,
                warnings=[NO_METRICS_WARNING],
                metadata={"baselineStart": baseline_start.isoformat()},
            )

        current = summarize_current(current_performance, current_quality)
        baselines = summarize_baseline(baseline_performance, baseline_quality)

        warnings: List[str] = []
        anomalies: List[str] = []

        for stage, snapshot in current.items():
            baseline = baselines.get(stage)
            severity, triggers = self.evaluate_stage(stage, snapshot, baseline, warnings)
            if severity is None:
                continue

            await context.recorder.record_analytics_anomaly(
                AnomalyRecord(
                    source=stage,
                    severity=severity,
                    description=f"Anomaly detected for stage {stage}: {' '.join(triggers)}",
                    occurred_at=window.end,
                    metadata={
                        "windowStart": window.start.isoformat(),
                        "windowEnd": window.end.isoformat(),
                        "baselineStart": baseline_start.isoformat(),
                        "baselineSamples": len(baseline.latencies) if baseline else 0,
                        "baselineTasks": baseline.tasks if baseline else 0,
                        "currentTasks": snapshot.tasks_processed,
                        "successRate": snapshot.success_rate,
                        "fallbackRate": snapshot.fallback_rate,
                        "humanHandOffRate": snapshot.human_hand_off_rate,
                        "avgLatencyMs": snapshot.avg_latency_ms,
                        "qualityScore": snapshot.quality_score,
                        "triggers": triggers,
                    },
                )
            )
            anomalies.append(stage)
            logger.info(
                f"Anomaly recorded for stage {stage} ({severity.value})",
                extra={"stage": stage, "severity": severity.value},
            )

        span.set_attribute("analytics.pipeline.analyzedStages", len(current))

        return PipelineResult(
            pipeline=self.name,
            records_processed=len(anomalies),
            telemetry_events_scanned=scanned,
            warnings=warnings,
            metadata={
                "baselineStart": baseline_start.isoformat(),
                "analyzedStages": list(current),
                "anomalousStages": anomalies,
            },
        )


def create_anomaly_pipeline(config: "AnalyticsConfig") -> AnomalyDetectionPipeline:
    """Build the pipeline; raises ConfigurationError on invalid thresholds."""
    return AnomalyDetectionPipeline(config)
