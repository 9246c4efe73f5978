"""
Ingestion orchestration for analytics.

Provides:
- Distributed per-pipeline locks (Redis)
- Cron / interval schedulers
- The pipeline registry and the analytics pipelines
- The orchestrator running the guarded execution protocol
- OpenTelemetry metrics for completed runs
"""

from analytics_core.ingestion.constants import AnalyticsPipeline, TelemetryEventType
from analytics_core.ingestion.shared_state import PipelineSharedState
from analytics_core.ingestion.types import (
    PipelineContext,
    PipelineDefinition,
    PipelinePhase,
    PipelineResult,
    PipelineRunner,
    PipelineWindow,
    SchedulerHandle,
)
from analytics_core.ingestion.lock_manager import (
    RedisLock,
    acquire_lock,
    release_lock,
)
from analytics_core.ingestion.scheduler import (
    CronScheduler,
    ScheduledTick,
    ScheduleOptions,
    schedule,
)
from analytics_core.ingestion.observability import (
    MetricsRecorder,
    PipelineMetricPayload,
    PipelineMetrics,
)
from analytics_core.ingestion.pipelines import (
    AgentPerformancePipeline,
    AnomalyDetectionPipeline,
    BasePipeline,
    QualityScorePipeline,
    RepositoryAnalyticsPipeline,
    UserEngagementPipeline,
    create_anomaly_pipeline,
)
from analytics_core.ingestion.registry import create_pipeline_registry
from analytics_core.ingestion.orchestrator import (
    IngestionDependencies,
    IngestionOrchestrator,
    PipelineExecutionError,
    create_ingestion_orchestrator,
)

__all__ = [
    # Constants
    "AnalyticsPipeline",
    "TelemetryEventType",
    # Types
    "PipelineContext",
    "PipelineDefinition",
    "PipelinePhase",
    "PipelineResult",
    "PipelineRunner",
    "PipelineSharedState",
    "PipelineWindow",
    "SchedulerHandle",
    # Locking
    "RedisLock",
    "acquire_lock",
    "release_lock",
    # Scheduling
    "CronScheduler",
    "ScheduledTick",
    "ScheduleOptions",
    "schedule",
    # Observability
    "MetricsRecorder",
    "PipelineMetricPayload",
    "PipelineMetrics",
    # Pipelines
    "BasePipeline",
    "QualityScorePipeline",
    "AgentPerformancePipeline",
    "RepositoryAnalyticsPipeline",
    "UserEngagementPipeline",
    "AnomalyDetectionPipeline",
    "create_anomaly_pipeline",
    "create_pipeline_registry",
    # Orchestration
    "IngestionDependencies",
    "IngestionOrchestrator",
    "PipelineExecutionError",
    "create_ingestion_orchestrator",
]
