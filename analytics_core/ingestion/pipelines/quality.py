"""
Quality score pipeline.

Aggregates task telemetry per agent stage and derives a 0-100 quality score
from a weighted linear model (see QualityScoreConfig).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List

from analytics_core.ingestion.constants import AnalyticsPipeline, TelemetryEventType
from analytics_core.ingestion.pipelines.base import BasePipeline, clean_key, to_number
from analytics_core.ingestion.types import PipelineContext, PipelineResult
from analytics_core.storage.records import QualityScoreRecord

if TYPE_CHECKING:
    from opentelemetry.trace import Span

    from analytics_core.config import QualityScoreConfig

logger = logging.getLogger(__name__)

QUALITY_EVENT_TYPES = [
    TelemetryEventType.TASK_COMPLETED.value,
    TelemetryEventType.TASK_FAILED.value,
    TelemetryEventType.QUALITY_OBSERVATION.value,
]


@dataclass
class StageAccumulator:
    total: int = 0
    successes: int = 0
    failures: int = 0
    latency_total: float = 0.0
    latency_samples: int = 0
    fallback_count: int = 0
    human_hand_off_count: int = 0
    retry_count: int = 0
    drivers: Dict[str, float] = field(default_factory=dict)


def normalize_drivers(source: Any) -> Dict[str, float]:
    """Keep only numeric driver values."""
    if not isinstance(source, dict):
        return {}
    drivers = {}
    for key, value in source.items():
        numeric = to_number(value)
        if numeric is not None:
            drivers[str(key)] = numeric
    return drivers


def compute_quality_score(
    config: "QualityScoreConfig",
    success_rate: float,
    avg_latency_ms: float,
    fallback_rate: float,
    human_hand_off_rate: float,
    retry_rate: float,
) -> float:
    """
    Linear model scaled to [0, 100] and rounded to two decimals.

    Weights are signed coefficients: the negative defaults penalize failures,
    latency above the baseline, fallbacks, hand-offs and retries.
    """
    weights = config.weights
    baseline_latency = max(config.latency_baseline_ms, 1.0)
    latency_delta = (avg_latency_ms - baseline_latency) / baseline_latency
    failure_rate = 1 - success_rate

    raw = (
        config.base_intercept
        + weights.success_rate * success_rate
        + weights.failure_rate * failure_rate
        + weights.latency * latency_delta
        + weights.fallback_rate * fallback_rate
        + weights.human_hand_off_rate * human_hand_off_rate
        + weights.retry_rate * retry_rate
    )
    scaled = max(0.0, min(100.0, raw * 20 + 50))
    return round(scaled, 2)


class QualityScorePipeline(BasePipeline):
    """Derives per-stage quality scores from task telemetry."""

    name = AnalyticsPipeline.QUALITY.value
    description = (
        "Aggregates agent quality scores from telemetry events and persists derived metrics."
    )

    def accumulate(self, events) -> Dict[str, StageAccumulator]:
        by_stage: Dict[str, StageAccumulator] = {}

        for event in events:
            payload = event.payload if isinstance(event.payload, dict) else {}
            stage = clean_key(payload.get("agentStage"))
            if not stage:
                continue

            acc = by_stage.setdefault(stage, StageAccumulator())
            acc.total += 1

            status = payload.get("status")
            if status == "success" or event.event_type == TelemetryEventType.TASK_COMPLETED.value:
                acc.successes += 1
            if status == "failure" or event.event_type == TelemetryEventType.TASK_FAILED.value:
                acc.failures += 1

            latency = to_number(payload.get("latencyMs"))
            if latency is not None:
                acc.latency_total += latency
                acc.latency_samples += 1

            if payload.get("fallback"):
                acc.fallback_count += 1
            if payload.get("humanHandOff"):
                acc.human_hand_off_count += 1
            if payload.get("retryAttempt"):
                acc.retry_count += 1

            for key, value in normalize_drivers(payload.get("drivers")).items():
                acc.drivers[key] = acc.drivers.get(key, 0.0) + value

        return by_stage

    async def _execute(self, context: PipelineContext, span: "Span") -> PipelineResult:
        window = context.window
        settings = self.config.quality_score

        events = await context.store.fetch_telemetry_events(
            QUALITY_EVENT_TYPES, window.start, window.end
        )

        if not events:
            span.add_event("No quality telemetry in window")
            return PipelineResult(
                pipeline=self.name,
                warnings=["No telemetry events detected in window"],
            )

        warnings: List[str] = []
        records = 0

        for stage, acc in self.accumulate(events).items():
            if acc.successes + acc.failures < settings.confident_task_count:
                warnings.append(
                    f"Stage {stage} has insufficient samples ({acc.total}); "
                    "quality score may be noisy."
                )

            success_rate = acc.successes / acc.total
            avg_latency = (
                acc.latency_total / acc.latency_samples
                if acc.latency_samples
                else settings.latency_baseline_ms
            )
            fallback_rate = acc.fallback_count / acc.total
            human_hand_off_rate = acc.human_hand_off_count / acc.total
            retry_rate = acc.retry_count / acc.total

            score = compute_quality_score(
                settings,
                success_rate,
                avg_latency,
                fallback_rate,
                human_hand_off_rate,
                retry_rate,
            )

            await context.recorder.record_quality_score(
                QualityScoreRecord(
                    agent_stage=stage,
                    score=score,
                    occurred_at=window.end,
                    drivers={
                        "successRate": success_rate,
                        "failureRate": 1 - success_rate,
                        "fallbackRate": fallback_rate,
                        "humanHandOffRate": human_hand_off_rate,
                        "retryRate": retry_rate,
                        "avgLatencyMs": avg_latency,
                        "samples": acc.total,
                        **acc.drivers,
                    },
                    metadata={
                        "windowStart": window.start.isoformat(),
                        "windowEnd": window.end.isoformat(),
                    },
                )
            )
            records += 1
            logger.debug(f"Quality score {score} recorded for stage {stage}")

        return PipelineResult(
            pipeline=self.name,
            records_processed=records,
            telemetry_events_scanned=len(events),
            warnings=warnings,
            metadata={"telemetryEvents": len(events)},
        )
