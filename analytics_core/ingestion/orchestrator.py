"""
Ingestion orchestrator.

Schedules every registered pipeline and runs each tick through the guarded
execution protocol:

    IDLE -> LOCK_ACQUIRING -> SKIPPED (lock busy)
                           -> RUNNING -> COMMITTED (cursor advanced)
                                      -> FAILED (window retried next tick)

The Redis lock is the only cross-process serialization point. Within one
process a pipeline that is still running is skipped on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Set,
)

from opentelemetry import trace

from analytics_core.config import ConfigurationError
from analytics_core.ingestion.lock_manager import acquire_lock, release_lock
from analytics_core.ingestion.observability import (
    MetricsRecorder,
    PipelineMetricPayload,
    PipelineMetrics,
)
from analytics_core.ingestion.registry import create_pipeline_registry
from analytics_core.ingestion.scheduler import ScheduleOptions, TickHandler, schedule
from analytics_core.ingestion.shared_state import PipelineSharedState
from analytics_core.ingestion.types import (
    PipelineContext,
    PipelineDefinition,
    PipelineExecutionError,
    PipelinePhase,
    PipelineResult,
    PipelineWindow,
    SchedulerHandle,
)
from analytics_core.storage.records import IngestionState, as_utc
from analytics_core.utils.logging_config import LogContext

if TYPE_CHECKING:
    from opentelemetry.trace import Tracer
    from redis.asyncio import Redis

    from analytics_core.config import AnalyticsConfig
    from analytics_core.storage.recorder import AnalyticsRecorder
    from analytics_core.storage.store import AnalyticsStore

logger = logging.getLogger(__name__)

TRACER_NAME = "analytics-ingestion"
WINDOW_SPAN_NAME = "analytics.ingestion.window"

SchedulerFactory = Callable[[str, TickHandler, ScheduleOptions], SchedulerHandle]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestionDependencies:
    """
    Everything the orchestrator needs, built once at process start.

    Only store, recorder, redis and config are required; the rest default to
    the production implementations.
    """
    store: "AnalyticsStore"
    recorder: "AnalyticsRecorder"
    redis: "Redis"
    config: "AnalyticsConfig"
    logger: Optional[logging.Logger] = None
    tracer: Optional["Tracer"] = None
    metrics: Optional[MetricsRecorder] = None
    registry: Optional[List[PipelineDefinition]] = None
    scheduler_factory: SchedulerFactory = schedule
    clock: Callable[[], datetime] = utc_now


@dataclass
class PipelineStatus:
    """Phase tracking for one pipeline in this process."""
    phase: PipelinePhase = PipelinePhase.IDLE
    last_outcome: Optional[PipelinePhase] = None
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    runs: int = 0
    skips: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
            "runs": self.runs,
            "skips": self.skips,
            "failures": self.failures,
        }


@dataclass
class OrchestratorStats:
    started_at: Optional[datetime] = None
    pipelines: Dict[str, PipelineStatus] = field(default_factory=dict)


class IngestionOrchestrator:
    """
    Coordinates schedulers, locks, ingestion state and pipelines.

    Usage:
        orchestrator = create_ingestion_orchestrator(deps)
        await orchestrator.start()
        ...
        await orchestrator.stop()
    """

    def __init__(self, deps: IngestionDependencies):
        self.deps = deps
        self.config = deps.config
        self.logger = deps.logger or logger
        self.tracer = deps.tracer or trace.get_tracer(TRACER_NAME)
        self.metrics: MetricsRecorder = deps.metrics or PipelineMetrics()
        self.shared = PipelineSharedState()

        registry = deps.registry if deps.registry is not None else create_pipeline_registry(self.config)
        enabled = set(self.config.ingestion.enabled_pipelines)
        self.pipelines: List[PipelineDefinition] = [
            p for p in registry if not enabled or p.name in enabled
        ]

        unknown = enabled - {p.name for p in registry}
        if unknown:
            self.logger.warning(
                f"[AnalyticsIngestion] Ignoring unknown enabled pipelines: {sorted(unknown)}"
            )

        self._handles: Dict[str, SchedulerHandle] = {}
        self._in_flight: Set[str] = set()
        self._stats = OrchestratorStats(
            pipelines={p.name: PipelineStatus() for p in self.pipelines}
        )
        self._started = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_started(self) -> bool:
        return self._started

    def schedule_options(self, pipeline: PipelineDefinition) -> ScheduleOptions:
        """
        Cron override from config, otherwise the pipeline's interval.

        Raises:
            ConfigurationError: If the cron expression or timezone is invalid.
        """
        ingestion = self.config.ingestion
        expression = ingestion.schedules.get(pipeline.name)
        try:
            return ScheduleOptions(
                expression=expression,
                interval_ms=None if expression else pipeline.interval_ms,
                run_on_init=True,
                timezone=ingestion.timezone,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid schedule for {pipeline.name}: {e}") from e

    async def start(self) -> None:
        """
        Register one scheduler per pipeline; each runs once immediately.

        Every schedule is validated before the first scheduler starts. If a
        scheduler cannot be created, the ones already running are stopped.

        Raises:
            ConfigurationError: If any schedule is invalid.
        """
        if self._started:
            self.logger.warning("[AnalyticsIngestion] Orchestrator already started")
            return

        planned = [(pipeline, self.schedule_options(pipeline)) for pipeline in self.pipelines]

        for pipeline, options in planned:
            try:
                handle = self.deps.scheduler_factory(
                    pipeline.name,
                    self._tick_handler(pipeline),
                    options,
                )
            except Exception:
                self.logger.error(
                    f"[AnalyticsIngestion] Failed to schedule {pipeline.name}; "
                    f"stopping {len(self._handles)} started scheduler(s)",
                    extra={"pipeline": pipeline.name},
                )
                await self._stop_handles()
                raise
            self._handles[pipeline.name] = handle
            self.logger.info(
                f"[AnalyticsIngestion] Scheduled pipeline {pipeline.name}",
                extra={
                    "pipeline": pipeline.name,
                    "cron_expression": options.expression,
                    "interval_ms": options.interval_ms,
                },
            )

        self._stats.started_at = self.deps.clock()
        self._started = True

    async def stop(self) -> None:
        """Stop every scheduler exactly once; in-flight runs complete."""
        if not self._started:
            return

        self._started = False
        await self._stop_handles()
        self.logger.info("[AnalyticsIngestion] Orchestrator stopped")

    async def _stop_handles(self) -> None:
        handles = list(self._handles.items())
        self._handles.clear()

        results = await asyncio.gather(
            *(handle.stop() for _, handle in handles),
            return_exceptions=True,
        )
        for (name, _), outcome in zip(handles, results):
            if isinstance(outcome, BaseException):
                self.logger.error(
                    f"[AnalyticsIngestion] Failed to stop scheduler for {name}: {outcome}",
                    exc_info=outcome,
                )

    def _tick_handler(self, pipeline: PipelineDefinition) -> TickHandler:
        async def handler() -> None:
            await self.execute_pipeline(pipeline)

        return handler

    # =========================================================================
    # Guarded execution
    # =========================================================================

    def get_pipeline(self, name: str) -> PipelineDefinition:
        for pipeline in self.pipelines:
            if pipeline.name == name:
                return pipeline
        raise KeyError(f"Unknown pipeline: {name}")

    async def run_once(self, name: str) -> Optional[PipelineResult]:
        """Run the guarded protocol for one pipeline now."""
        return await self.execute_pipeline(self.get_pipeline(name))

    def lock_key(self, pipeline: PipelineDefinition) -> str:
        return f"{self.config.ingestion.lock_key_prefix}{pipeline.name}"

    async def execute_pipeline(self, pipeline: PipelineDefinition) -> Optional[PipelineResult]:
        """
        Acquire the pipeline lock, process one window and commit the cursor.

        Returns:
            The run result, or None when the run was skipped.

        Raises:
            PipelineExecutionError: If the pipeline failed; state is unchanged.
            StateStoreError: If the cursor could not be persisted.
        """
        name = pipeline.name
        status = self._stats.pipelines.setdefault(name, PipelineStatus())

        if name in self._in_flight:
            self.logger.warning(
                f"[AnalyticsIngestion] Skipping run; {name} already in-flight",
                extra={"pipeline": name},
            )
            status.skips += 1
            return None

        self._in_flight.add(name)
        try:
            status.phase = PipelinePhase.LOCK_ACQUIRING
            ttl_ms = self.config.ingestion.lock_ttl_ms(pipeline.interval_ms)
            lock = await acquire_lock(self.deps.redis, self.lock_key(pipeline), ttl_ms)

            if lock is None:
                self.logger.debug(
                    f"[AnalyticsIngestion] Lock contention for {name}; another worker is running",
                    extra={"pipeline": name},
                )
                status.skips += 1
                status.last_outcome = PipelinePhase.SKIPPED
                return None

            try:
                status.phase = PipelinePhase.RUNNING
                result = await self._run_window(pipeline)
            except Exception as e:
                status.failures += 1
                status.last_error = str(e)
                status.last_outcome = PipelinePhase.FAILED
                raise
            finally:
                await release_lock(self.deps.redis, lock)

            status.runs += 1
            status.last_error = None
            status.last_outcome = PipelinePhase.COMMITTED
            status.last_run_at = self.deps.clock()
            return result
        finally:
            status.phase = PipelinePhase.IDLE
            self._in_flight.discard(name)

    async def compute_window(self, name: str) -> PipelineWindow:
        """Window from the persisted cursor (or the initial lookback) to now."""
        now = as_utc(self.deps.clock())
        state = await self.deps.store.get_ingestion_state(name)

        if state is None:
            lookback = timedelta(minutes=max(1, self.config.ingestion.window_minutes))
            state = IngestionState(pipeline=name, last_processed_at=now - lookback)

        start = as_utc(state.last_processed_at)
        return PipelineWindow(start=start, end=max(now, start), state=state)

    def resolve_cursor(self, name: str, result: PipelineResult, window: PipelineWindow) -> datetime:
        """next_cursor (default window.end), never earlier than window.start."""
        cursor = result.next_cursor if result.next_cursor is not None else window.end

        if not isinstance(cursor, datetime):
            self.logger.error(
                f"[AnalyticsIngestion] Invalid next cursor {cursor!r} from {name}; not committing",
                extra={"pipeline": name},
            )
            raise PipelineExecutionError(name, f"invalid next cursor {cursor!r}")

        cursor = as_utc(cursor)
        if cursor < window.start:
            self.logger.warning(
                f"[AnalyticsIngestion] Cursor {cursor.isoformat()} precedes window start "
                f"for {name}; clamping",
                extra={"pipeline": name},
            )
            cursor = window.start
        return cursor

    async def _run_window(self, pipeline: PipelineDefinition) -> PipelineResult:
        name = pipeline.name
        window = await self.compute_window(name)
        run_id = uuid.uuid4().hex[:12]

        with LogContext(pipeline=name, run_id=run_id):
            with self.tracer.start_as_current_span(
                WINDOW_SPAN_NAME,
                attributes={
                    "analytics.pipeline": name,
                    "analytics.window.start": window.start.isoformat(),
                    "analytics.window.end": window.end.isoformat(),
                },
            ) as span:
                context = PipelineContext(
                    store=self.deps.store,
                    recorder=self.deps.recorder,
                    config=self.config,
                    logger=self.logger,
                    tracer=self.tracer,
                    window=window,
                    shared=self.shared,
                    span=span,
                )
                try:
                    result = await pipeline.run(context)
                except Exception as e:
                    self.logger.exception(
                        f"[AnalyticsIngestion] Pipeline run failed: {name}",
                        extra={"pipeline": name},
                    )
                    raise PipelineExecutionError(name, str(e)) from e

            for warning in result.warnings:
                self.logger.warning(
                    f"[AnalyticsIngestion] Pipeline warning ({name}): {warning}",
                    extra={"pipeline": name},
                )

            cursor = self.resolve_cursor(name, result, window)
            await self.deps.store.upsert_ingestion_state(name, cursor, result.metadata)

            self.metrics(
                PipelineMetricPayload(
                    pipeline=name,
                    windows_processed=1,
                    records_processed=result.records_processed,
                    telemetry_events=result.telemetry_events_scanned,
                    duration_ms=result.duration_ms,
                )
            )
            self.shared.set(f"last_result:{name}", result)

            self.logger.info(
                f"[AnalyticsIngestion] Pipeline invocation complete: {name} "
                f"({result.records_processed} records, {result.duration_ms}ms)",
                extra={
                    "pipeline": name,
                    "records_processed": result.records_processed,
                    "telemetry_events": result.telemetry_events_scanned,
                    "duration_ms": result.duration_ms,
                    "cursor": cursor.isoformat(),
                },
            )

        return result

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            "started": self._started,
            "started_at": self._stats.started_at.isoformat() if self._stats.started_at else None,
            "in_flight": sorted(self._in_flight),
            "pipelines": {
                name: status.to_dict() for name, status in self._stats.pipelines.items()
            },
        }


def create_ingestion_orchestrator(deps: IngestionDependencies) -> IngestionOrchestrator:
    """Build an orchestrator; raises ConfigurationError on invalid thresholds."""
    return IngestionOrchestrator(deps)
