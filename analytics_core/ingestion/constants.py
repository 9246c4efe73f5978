"""
Pipeline names and telemetry event types.
"""

from __future__ import annotations

from enum import Enum


class AnalyticsPipeline(str, Enum):
    """Registered pipeline names; also used in lock keys and state rows."""
    QUALITY = "analytics-quality"
    AGENT_PERFORMANCE = "analytics-agent-performance"
    USER_ENGAGEMENT = "analytics-user-engagement"
    REPOSITORY = "analytics-repository"
    ANOMALIES = "analytics-anomalies"


class TelemetryEventType(str, Enum):
    """Telemetry event types consumed by the pipelines."""
    QUALITY_OBSERVATION = "analytics.quality-observation"
    AGENT_PERFORMANCE = "analytics.agent-performance"
    TASK_COMPLETED = "agent.task.completed"
    TASK_FAILED = "agent.task.failed"
    STAGE_COMPLETED = "agent.stage.completed"
    STAGE_FAILED = "agent.stage.failed"
    USER_ENGAGEMENT = "analytics.user-engagement"
    SESSION_STARTED = "session.started"
    SESSION_ENDED = "session.ended"
    COLLABORATION_SESSION_STARTED = "collaboration.session.started"
    COLLABORATION_SESSION_ENDED = "collaboration.session.ended"
    FEATURE_USED = "feature.used"
    COMMIT_ACTIVITY = "repository.commit.activity"
    COVERAGE_SNAPSHOT = "repository.coverage.snapshot"
