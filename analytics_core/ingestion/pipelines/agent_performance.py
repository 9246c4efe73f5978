"""
Agent performance pipeline.

Rolls task and stage telemetry up into one AgentPerformanceRecord per stage:
throughput, success/fallback/hand-off rates, latency spread and retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from analytics_core.ingestion.constants import AnalyticsPipeline, TelemetryEventType
from analytics_core.ingestion.pipelines.base import BasePipeline, clean_key, to_number
from analytics_core.ingestion.types import PipelineContext, PipelineResult
from analytics_core.storage.records import AgentPerformanceRecord, TelemetryEvent

if TYPE_CHECKING:
    from opentelemetry.trace import Span

logger = logging.getLogger(__name__)

PERFORMANCE_EVENT_TYPES = [
    TelemetryEventType.TASK_COMPLETED.value,
    TelemetryEventType.TASK_FAILED.value,
    TelemetryEventType.STAGE_COMPLETED.value,
    TelemetryEventType.STAGE_FAILED.value,
    TelemetryEventType.AGENT_PERFORMANCE.value,
]

METADATA_SAMPLE_CAP = 25

STAGE_KEYS = ("agentStage", "stageId", "stageName", "stage")


@dataclass
class PerformanceAccumulator:
    tasks_processed: int = 0
    successes: int = 0
    failures: int = 0
    latency_total: float = 0.0
    latency_samples: int = 0
    latency_max: float = 0.0
    latency_min: float = float("inf")
    fallback_count: int = 0
    human_hand_off_count: int = 0
    retry_count: float = 0.0
    metadata_samples: List[Dict[str, Any]] = field(default_factory=list)

    def add_latency(self, latency: float) -> None:
        self.latency_total += latency
        self.latency_samples += 1
        self.latency_max = max(self.latency_max, latency)
        self.latency_min = min(self.latency_min, latency)


def derive_stage(payload: Dict[str, Any]) -> Optional[str]:
    """First non-blank of agentStage, stageId, stageName, stage."""
    for key in STAGE_KEYS:
        value = payload.get(key)
        if value is not None:
            return clean_key(value)
    return None


def derive_status(payload: Dict[str, Any], event_type: str) -> Optional[str]:
    status = payload.get("status")
    if status is not None:
        return status
    if "failed" in event_type:
        return "failure"
    if "completed" in event_type:
        return "success"
    return None


class AgentPerformancePipeline(BasePipeline):
    """Aggregates per-stage agent throughput and latency."""

    name = AnalyticsPipeline.AGENT_PERFORMANCE.value
    description = (
        "Aggregates agent throughput, latency, and retry behaviour into "
        "AgentPerformanceMetric records."
    )

    def accumulate(self, events: List[TelemetryEvent]) -> Dict[str, PerformanceAccumulator]:
        by_stage: Dict[str, PerformanceAccumulator] = {}

        for event in events:
            payload = event.payload if isinstance(event.payload, dict) else {}
            stage = derive_stage(payload)
            if not stage:
                continue

            acc = by_stage.setdefault(stage, PerformanceAccumulator())

            status = derive_status(payload, event.event_type)
            if status == "success":
                acc.successes += 1
                acc.tasks_processed += 1
            elif status == "failure":
                acc.failures += 1
                acc.tasks_processed += 1

            nested = payload.get("metadata")
            latency_value = payload.get("latencyMs")
            if latency_value is None and isinstance(nested, dict):
                latency_value = nested.get("latencyMs")
            latency = to_number(latency_value)
            if latency is not None:
                acc.add_latency(latency)

            if payload.get("fallback"):
                acc.fallback_count += 1
            if payload.get("humanHandOff"):
                acc.human_hand_off_count += 1

            retries = to_number(payload.get("retries"))
            if retries is not None and retries > 0:
                acc.retry_count += retries

            if isinstance(nested, dict) and nested and len(acc.metadata_samples) < METADATA_SAMPLE_CAP:
                acc.metadata_samples.append(nested)

        return by_stage

    async def _execute(self, context: PipelineContext, span: "Span") -> PipelineResult:
        window = context.window
        latency_baseline = max(self.config.quality_score.latency_baseline_ms, 1.0)

        events = await context.store.fetch_telemetry_events(
            PERFORMANCE_EVENT_TYPES, window.start, window.end
        )
        by_stage = self.accumulate(events)

        warnings: List[str] = []
        records = 0

        for stage, acc in by_stage.items():
            if acc.tasks_processed == 0:
                warnings.append(f"Stage {stage} had no completed tasks in window.")
                continue

            tasks = acc.tasks_processed
            avg_latency = (
                acc.latency_total / acc.latency_samples
                if acc.latency_samples
                else latency_baseline
            )
            has_latency = acc.latency_samples > 0

            metadata: Dict[str, Any] = {
                "latencySamples": acc.latency_samples,
                "latencyMax": acc.latency_max if has_latency else None,
                "latencyMin": acc.latency_min if has_latency else None,
                "retries": acc.retry_count,
                "windowStart": window.start.isoformat(),
                "windowEnd": window.end.isoformat(),
            }
            if acc.metadata_samples:
                metadata["samples"] = acc.metadata_samples

            await context.recorder.record_agent_performance(
                AgentPerformanceRecord(
                    agent_stage=stage,
                    window_start=window.start,
                    window_end=window.end,
                    tasks_processed=tasks,
                    avg_latency_ms=round(avg_latency),
                    success_rate=round(acc.successes / tasks, 4),
                    fallback_rate=round(acc.fallback_count / tasks, 4),
                    human_hand_off_rate=round(acc.human_hand_off_count / tasks, 4),
                    metadata=metadata,
                )
            )
            records += 1

        logger.debug(f"Agent performance recorded for {records} stage(s)")

        return PipelineResult(
            pipeline=self.name,
            records_processed=records,
            telemetry_events_scanned=len(events),
            warnings=warnings,
            metadata={"stages": list(by_stage)},
        )
