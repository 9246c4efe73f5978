"""
Analytics pipelines.

Each pipeline is a BasePipeline subclass; definition() yields the registry
entry the orchestrator schedules.
"""

from analytics_core.ingestion.pipelines.base import BasePipeline
from analytics_core.ingestion.pipelines.quality import QualityScorePipeline
from analytics_core.ingestion.pipelines.agent_performance import AgentPerformancePipeline
from analytics_core.ingestion.pipelines.user_engagement import UserEngagementPipeline
from analytics_core.ingestion.pipelines.repository import RepositoryAnalyticsPipeline
from analytics_core.ingestion.pipelines.anomaly import (
    AnomalyDetectionPipeline,
    create_anomaly_pipeline,
)

__all__ = [
    "BasePipeline",
    "QualityScorePipeline",
    "AgentPerformancePipeline",
    "UserEngagementPipeline",
    "RepositoryAnalyticsPipeline",
    "AnomalyDetectionPipeline",
    "create_anomaly_pipeline",
]
