"""
Static, ordered list of the pipelines the orchestrator schedules.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List

from analytics_core.ingestion.pipelines.agent_performance import AgentPerformancePipeline
from analytics_core.ingestion.pipelines.anomaly import create_anomaly_pipeline
from analytics_core.ingestion.pipelines.quality import QualityScorePipeline
from analytics_core.ingestion.pipelines.repository import RepositoryAnalyticsPipeline
from analytics_core.ingestion.pipelines.user_engagement import UserEngagementPipeline
from analytics_core.ingestion.types import PipelineDefinition

if TYPE_CHECKING:
    from analytics_core.config import AnalyticsConfig


def create_pipeline_registry(config: "AnalyticsConfig") -> List[PipelineDefinition]:
    """
    Build every pipeline definition.

    Raises:
        ConfigurationError: If anomaly thresholds are invalid.
        ValueError: If two pipelines share a name.
    """
    definitions = [
        QualityScorePipeline(config).definition(),
        AgentPerformancePipeline(config).definition(),
        UserEngagementPipeline(config).definition(),
        RepositoryAnalyticsPipeline(config).definition(),
        create_anomaly_pipeline(config).definition(),
    ]

    names = [definition.name for definition in definitions]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate pipeline names in registry: {names}")

    return definitions
