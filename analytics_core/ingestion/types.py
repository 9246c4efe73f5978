"""
Core types for ingestion orchestration.

Defines:
- PipelineWindow: The half-open time range a run is responsible for
- PipelineResult: Output of a single pipeline run
- PipelineContext: Dependencies handed to every pipeline run
- PipelineDefinition: Immutable registry entry
- SchedulerHandle: Protocol for stoppable schedules
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from analytics_core.ingestion.shared_state import PipelineSharedState
from analytics_core.storage.records import IngestionState

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer

    from analytics_core.config import AnalyticsConfig
    from analytics_core.storage.recorder import AnalyticsRecorder
    from analytics_core.storage.store import AnalyticsStore


class PipelinePhase(Enum):
    """Lifecycle of one guarded execution."""
    IDLE = "idle"
    LOCK_ACQUIRING = "lock_acquiring"
    SKIPPED = "skipped"
    RUNNING = "running"
    COMMITTED = "committed"
    FAILED = "failed"


class PipelineExecutionError(RuntimeError):
    """A pipeline run (or its cursor) failed; the window was not committed."""

    def __init__(self, pipeline: str, message: str):
        super().__init__(f"Pipeline {pipeline} failed: {message}")
        self.pipeline = pipeline


@dataclass(frozen=True)
class PipelineWindow:
    """Half-open range [start, end) plus the state it was computed from."""
    start: datetime
    end: datetime
    state: IngestionState

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


@dataclass(frozen=True)
class PipelineResult:
    """
    Result of a single pipeline run.

    duration_ms is excluded from equality so that re-running an identical
    window compares equal.
    """
    pipeline: str
    records_processed: int = 0
    telemetry_events_scanned: int = 0
    duration_ms: int = field(default=0, compare=False)
    warnings: List[str] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    next_cursor: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "records_processed": self.records_processed,
            "telemetry_events_scanned": self.telemetry_events_scanned,
            "duration_ms": self.duration_ms,
            "warnings": list(self.warnings),
            "metadata": self.metadata,
            "next_cursor": self.next_cursor.isoformat() if self.next_cursor else None,
        }


@dataclass
class PipelineContext:
    """Everything a pipeline run may touch; built fresh for every window."""
    store: "AnalyticsStore"
    recorder: "AnalyticsRecorder"
    config: "AnalyticsConfig"
    logger: logging.Logger
    tracer: "Tracer"
    window: PipelineWindow
    shared: PipelineSharedState
    span: Optional["Span"] = None


PipelineRunner = Callable[[PipelineContext], Awaitable[PipelineResult]]


@dataclass(frozen=True)
class PipelineDefinition:
    """Immutable registry entry describing a schedulable pipeline."""
    name: str
    description: str
    interval_ms: int
    run: PipelineRunner

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Pipeline name must not be empty")
        if self.interval_ms <= 0:
            raise ValueError(f"Pipeline {self.name} interval_ms must be > 0")


@runtime_checkable
class SchedulerHandle(Protocol):
    """A running schedule that can be stopped."""

    async def stop(self) -> None:
        """Prevent future ticks; in-flight invocations complete."""
        ...
