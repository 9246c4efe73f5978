"""
Write-only sinks for derived analytics records.

Defines:
- AnalyticsRecorder: Protocol of the recording calls pipelines make
- SqlAlchemyAnalyticsRecorder: Persists records into the analytics tables
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_core.storage.models import (
    AgentPerformanceMetricRow,
    AnalyticsAnomalyEventRow,
    QualityScoreObservationRow,
    RepositoryAnalyticsMetricRow,
    UserEngagementMetricRow,
)
from analytics_core.storage.records import (
    AgentPerformanceRecord,
    AnomalyRecord,
    QualityScoreRecord,
    RepositoryAnalyticsRecord,
    UserEngagementRecord,
    as_utc,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class AnalyticsRecorder(Protocol):
    """Recording collaborator called by the pipelines."""

    async def record_analytics_anomaly(self, entry: AnomalyRecord) -> None:
        ...

    async def record_repository_analytics(self, entry: RepositoryAnalyticsRecord) -> None:
        ...

    async def record_quality_score(self, entry: QualityScoreRecord) -> None:
        ...

    async def record_agent_performance(self, entry: AgentPerformanceRecord) -> None:
        ...

    async def record_user_engagement(self, entry: UserEngagementRecord) -> None:
        ...


class SqlAlchemyAnalyticsRecorder:
    """AnalyticsRecorder writing to the analytics tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record_analytics_anomaly(self, entry: AnomalyRecord) -> None:
        """Upsert on (source, severity, occurred_at); re-opens resolved rows."""
        occurred_at = as_utc(entry.occurred_at or datetime.now(timezone.utc))
        severity = entry.severity.value

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.scalar(
                    select(AnalyticsAnomalyEventRow).where(
                        AnalyticsAnomalyEventRow.source == entry.source,
                        AnalyticsAnomalyEventRow.severity == severity,
                        AnalyticsAnomalyEventRow.occurred_at == occurred_at,
                    )
                )
                if row is None:
                    session.add(
                        AnalyticsAnomalyEventRow(
                            source=entry.source,
                            severity=severity,
                            description=entry.description,
                            metadata_json=entry.metadata or None,
                            occurred_at=occurred_at,
                        )
                    )
                else:
                    row.description = entry.description
                    row.metadata_json = entry.metadata or None
                    row.resolved = False

        logger.debug(f"Recorded {severity} anomaly for {entry.source}")

    async def record_repository_analytics(self, entry: RepositoryAnalyticsRecord) -> None:
        """Upsert on (repository, branch, window_start, window_end)."""
        if entry.window_start is None or entry.window_end is None:
            raise ValueError("Repository analytics require window_start and window_end")

        window_start = as_utc(entry.window_start)
        window_end = as_utc(entry.window_end)

        async with self._session_factory() as session:
            async with session.begin():
                branch_clause = (
                    RepositoryAnalyticsMetricRow.branch.is_(None)
                    if entry.branch is None
                    else RepositoryAnalyticsMetricRow.branch == entry.branch
                )
                row = await session.scalar(
                    select(RepositoryAnalyticsMetricRow).where(
                        RepositoryAnalyticsMetricRow.repository == entry.repository,
                        branch_clause,
                        RepositoryAnalyticsMetricRow.window_start == window_start,
                        RepositoryAnalyticsMetricRow.window_end == window_end,
                    )
                )
                if row is None:
                    session.add(
                        RepositoryAnalyticsMetricRow(
                            repository=entry.repository,
                            branch=entry.branch,
                            window_start=window_start,
                            window_end=window_end,
                            commit_velocity=entry.commit_velocity,
                            refactor_hotspots=entry.refactor_hotspots,
                            coverage_drift=entry.coverage_drift,
                            metadata_json=entry.metadata or None,
                        )
                    )
                else:
                    row.commit_velocity = entry.commit_velocity
                    row.refactor_hotspots = entry.refactor_hotspots
                    row.coverage_drift = entry.coverage_drift
                    row.metadata_json = entry.metadata or None

    async def record_quality_score(self, entry: QualityScoreRecord) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    QualityScoreObservationRow(
                        agent_stage=entry.agent_stage,
                        score=entry.score,
                        drivers=entry.drivers,
                        metadata_json=entry.metadata or None,
                        occurred_at=as_utc(entry.occurred_at),
                    )
                )

    async def record_agent_performance(self, entry: AgentPerformanceRecord) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    AgentPerformanceMetricRow(
                        agent_stage=entry.agent_stage,
                        window_start=as_utc(entry.window_start),
                        window_end=as_utc(entry.window_end),
                        tasks_processed=entry.tasks_processed,
                        avg_latency_ms=entry.avg_latency_ms,
                        success_rate=entry.success_rate,
                        fallback_rate=entry.fallback_rate,
                        human_hand_off_rate=entry.human_hand_off_rate,
                        metadata_json=entry.metadata or None,
                    )
                )

    async def record_user_engagement(self, entry: UserEngagementRecord) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    UserEngagementMetricRow(
                        window_start=as_utc(entry.window_start),
                        window_end=as_utc(entry.window_end),
                        active_users=entry.active_users,
                        collaboration_sessions=entry.collaboration_sessions,
                        avg_session_duration_sec=entry.avg_session_duration_sec,
                        feature_usage=entry.feature_usage,
                        retention_cohorts=entry.retention_cohorts,
                        metadata_json=entry.metadata or None,
                    )
                )
