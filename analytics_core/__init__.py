"""
Analytics Core - Scheduled analytics ingestion for agent telemetry

Provides:
- Windowed ingestion with a persisted per-pipeline cursor
- Redis locks so that only one instance processes a pipeline at a time
- Cron / interval scheduling per pipeline
- Anomaly detection over agent performance and quality scores
- Repository health analytics (commit velocity, coverage drift)
- Quality score and agent performance rollups
- SQLAlchemy storage, OpenTelemetry tracing and metrics
"""

__version__ = "0.3.0"

# Configuration
from analytics_core.config import (
    AnalyticsConfig,
    AnomalyConfig,
    ConfigurationError,
    IngestionConfig,
    QualityScoreConfig,
    StoreConfig,
    load_config,
)

# Storage
from analytics_core.storage import (
    AnalyticsRecorder,
    AnalyticsStore,
    IngestionState,
    SqlAlchemyAnalyticsRecorder,
    SqlAlchemyAnalyticsStore,
    StateStoreError,
    create_all,
    create_engine_and_session,
)

# Ingestion
from analytics_core.ingestion import (
    AnalyticsPipeline,
    IngestionDependencies,
    IngestionOrchestrator,
    PipelineDefinition,
    PipelineExecutionError,
    PipelineResult,
    PipelineWindow,
    create_ingestion_orchestrator,
    create_pipeline_registry,
)

# Utilities
from analytics_core.utils import LogContext, LoggingConfig, setup_logging

__all__ = [
    "__version__",
    # Config
    "AnalyticsConfig",
    "AnomalyConfig",
    "ConfigurationError",
    "IngestionConfig",
    "QualityScoreConfig",
    "StoreConfig",
    "load_config",
    # Storage
    "AnalyticsRecorder",
    "AnalyticsStore",
    "IngestionState",
    "SqlAlchemyAnalyticsRecorder",
    "SqlAlchemyAnalyticsStore",
    "StateStoreError",
    "create_all",
    "create_engine_and_session",
    # Ingestion
    "AnalyticsPipeline",
    "IngestionDependencies",
    "IngestionOrchestrator",
    "PipelineDefinition",
    "PipelineExecutionError",
    "PipelineResult",
    "PipelineWindow",
    "create_ingestion_orchestrator",
    "create_pipeline_registry",
    # Utils
    "LogContext",
    "LoggingConfig",
    "setup_logging",
]
