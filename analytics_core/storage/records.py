"""
Row types exchanged with the relational store.

Defines:
- IngestionState: Persisted cursor row for a pipeline
- Input rows read by pipelines: AgentPerformanceMetric, QualityScoreObservation,
  TelemetryEvent
- Output records handed to the recorder: AnomalyRecord,
  RepositoryAnalyticsRecord, QualityScoreRecord, AgentPerformanceRecord,
  UserEngagementRecord
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AnomalySeverity(Enum):
    """Severity of a detected anomaly."""
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class IngestionState:
    """Persisted cursor for a pipeline, keyed by pipeline name."""
    pipeline: str
    last_processed_at: datetime
    metadata: Optional[Any] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def persisted(self) -> bool:
        """Whether this state was loaded from the store."""
        return self.id is not None


# =============================================================================
# Input rows (read-only to the ingestion core)
# =============================================================================

@dataclass(frozen=True)
class AgentPerformanceMetric:
    """Aggregated performance of one agent stage over a window."""
    agent_stage: str
    success_rate: float
    fallback_rate: float
    human_hand_off_rate: float
    avg_latency_ms: float
    tasks_processed: int
    window_start: datetime
    window_end: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class QualityScoreObservation:
    """A single quality score (0-100) observed for an agent stage."""
    agent_stage: str
    score: float
    occurred_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class TelemetryEvent:
    """A raw telemetry event with an opaque JSON payload."""
    event_type: str
    payload: Dict[str, Any]
    occurred_at: datetime
    id: Optional[int] = None


# =============================================================================
# Output records (owned by the recording collaborator)
# =============================================================================

@dataclass
class AnomalyRecord:
    """An anomaly detected for an agent stage."""
    source: str
    severity: AnomalySeverity
    description: str
    occurred_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "severity": self.severity.value,
            "description": self.description,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "metadata": self.metadata,
        }


@dataclass
class RepositoryAnalyticsRecord:
    """Health metrics for one repository branch over a window."""
    repository: str
    branch: Optional[str]
    commit_velocity: float
    coverage_drift: float
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    refactor_hotspots: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QualityScoreRecord:
    """A derived quality score for an agent stage."""
    agent_stage: str
    score: float
    occurred_at: datetime
    drivers: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentPerformanceRecord:
    """A derived performance summary for an agent stage."""
    agent_stage: str
    window_start: datetime
    window_end: datetime
    tasks_processed: int
    avg_latency_ms: int
    success_rate: float
    fallback_rate: float
    human_hand_off_rate: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserEngagementRecord:
    """Active users, sessions and feature usage over a window."""
    window_start: datetime
    window_end: datetime
    active_users: int
    collaboration_sessions: int
    avg_session_duration_sec: float
    feature_usage: Dict[str, float] = field(default_factory=dict)
    retention_cohorts: Optional[Dict[str, int]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
