"""
In-memory collaborators and builders for the ingestion tests.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from opentelemetry import trace

from analytics_core.ingestion.shared_state import PipelineSharedState
from analytics_core.ingestion.types import PipelineContext, PipelineWindow
from analytics_core.storage.records import (
    AgentPerformanceMetric,
    AgentPerformanceRecord,
    AnomalyRecord,
    IngestionState,
    QualityScoreObservation,
    QualityScoreRecord,
    RepositoryAnalyticsRecord,
    TelemetryEvent,
    UserEngagementRecord,
    as_utc,
)

WINDOW_END = datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc)
WINDOW_START = WINDOW_END - timedelta(hours=1)


# =============================================================================
# Fakes
# =============================================================================


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the lock manager."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.set_calls: List[Dict[str, Any]] = []
        self.eval_calls: List[tuple] = []

    async def set(self, key, value, px=None, nx=False):
        self.set_calls.append({"key": key, "value": value, "px": px, "nx": nx})
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.ttls[key] = px
        return True

    async def eval(self, script, numkeys, *args):
        self.eval_calls.append((script, numkeys) + args)
        key, token = args[0], args[1]
        if self.values.get(key) == token:
            del self.values[key]
            self.ttls.pop(key, None)
            return 1
        return 0


class InMemoryStore:
    """AnalyticsStore over plain lists."""

    def __init__(
        self,
        performance: Optional[List[AgentPerformanceMetric]] = None,
        quality: Optional[List[QualityScoreObservation]] = None,
        events: Optional[List[TelemetryEvent]] = None,
    ):
        self.performance = list(performance or [])
        self.quality = list(quality or [])
        self.events = list(events or [])
        self.states: Dict[str, IngestionState] = {}
        self.upsert_calls: List[Dict[str, Any]] = []
        self.fail_upsert: Optional[Exception] = None

    async def get_ingestion_state(self, pipeline: str) -> Optional[IngestionState]:
        return self.states.get(pipeline)

    async def upsert_ingestion_state(self, pipeline, last_processed_at, metadata=None):
        self.upsert_calls.append(
            {"pipeline": pipeline, "last_processed_at": last_processed_at, "metadata": metadata}
        )
        if self.fail_upsert is not None:
            raise self.fail_upsert
        previous = self.states.get(pipeline)
        state = IngestionState(
            pipeline=pipeline,
            last_processed_at=as_utc(last_processed_at),
            metadata=metadata,
            updated_at=datetime.now(timezone.utc),
            id=previous.id if previous else len(self.states) + 1,
        )
        self.states[pipeline] = state
        return state

    async def fetch_agent_performance(self, start, end):
        return [row for row in self.performance if start <= row.window_start < end]

    async def fetch_quality_observations(self, start, end):
        return [row for row in self.quality if start <= row.occurred_at < end]

    async def fetch_telemetry_events(self, event_types: Iterable[str], start, end):
        wanted = set(event_types)
        matches = [
            event for event in self.events
            if event.event_type in wanted and start <= event.occurred_at < end
        ]
        return sorted(matches, key=lambda event: event.occurred_at)


class RecordingRecorder:
    """AnalyticsRecorder that keeps every entry in memory."""

    def __init__(self):
        self.anomalies: List[AnomalyRecord] = []
        self.repository: List[RepositoryAnalyticsRecord] = []
        self.quality: List[QualityScoreRecord] = []
        self.performance: List[AgentPerformanceRecord] = []
        self.engagement: List[UserEngagementRecord] = []

    @property
    def total_calls(self) -> int:
        return (
            len(self.anomalies)
            + len(self.repository)
            + len(self.quality)
            + len(self.performance)
            + len(self.engagement)
        )

    async def record_analytics_anomaly(self, entry):
        self.anomalies.append(entry)

    async def record_repository_analytics(self, entry):
        self.repository.append(entry)

    async def record_quality_score(self, entry):
        self.quality.append(entry)

    async def record_agent_performance(self, entry):
        self.performance.append(entry)

    async def record_user_engagement(self, entry):
        self.engagement.append(entry)


# =============================================================================
# Builders
# =============================================================================


def performance_row(stage, success_rate, avg_latency_ms, at, tasks=10, **overrides):
    values = dict(
        agent_stage=stage,
        success_rate=success_rate,
        fallback_rate=0.0,
        human_hand_off_rate=0.0,
        avg_latency_ms=avg_latency_ms,
        tasks_processed=tasks,
        window_start=at,
        window_end=at + timedelta(minutes=5),
    )
    values.update(overrides)
    return AgentPerformanceMetric(**values)


def telemetry_event(event_type, payload, at):
    return TelemetryEvent(event_type=event_type, payload=payload, occurred_at=at)


def build_context(
    store,
    recorder,
    config,
    start=WINDOW_START,
    end=WINDOW_END,
    pipeline="test-pipeline",
) -> PipelineContext:
    window = PipelineWindow(
        start=start,
        end=end,
        state=IngestionState(pipeline=pipeline, last_processed_at=start),
    )
    return PipelineContext(
        store=store,
        recorder=recorder,
        config=config,
        logger=logging.getLogger("tests"),
        tracer=trace.NoOpTracer(),
        window=window,
        shared=PipelineSharedState(),
    )
