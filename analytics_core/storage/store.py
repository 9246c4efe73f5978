"""
Read/write contract between the ingestion core and the relational store.

Defines:
- AnalyticsStore: Protocol the orchestrator and pipelines depend on
- SqlAlchemyAnalyticsStore: Async SQLAlchemy implementation
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import (
    Any,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_core.storage.models import (
    AgentPerformanceMetricRow,
    AnalyticsIngestionStateRow,
    QualityScoreObservationRow,
    TelemetryEventRow,
)
from analytics_core.storage.records import (
    AgentPerformanceMetric,
    IngestionState,
    QualityScoreObservation,
    TelemetryEvent,
    as_utc,
)

logger = logging.getLogger(__name__)


class StateStoreError(RuntimeError):
    """Raised when the ingestion state could not be read or written."""


@runtime_checkable
class AnalyticsStore(Protocol):
    """Store operations required by the ingestion core."""

    async def get_ingestion_state(self, pipeline: str) -> Optional[IngestionState]:
        """Find the state row for a pipeline."""
        ...

    async def upsert_ingestion_state(
        self,
        pipeline: str,
        last_processed_at: datetime,
        metadata: Optional[Any] = None,
    ) -> IngestionState:
        """Create or update the state row for a pipeline."""
        ...

    async def fetch_agent_performance(
        self, start: datetime, end: datetime
    ) -> List[AgentPerformanceMetric]:
        """Performance rows whose window starts within [start, end)."""
        ...

    async def fetch_quality_observations(
        self, start: datetime, end: datetime
    ) -> List[QualityScoreObservation]:
        """Quality observations that occurred within [start, end)."""
        ...

    async def fetch_telemetry_events(
        self, event_types: Iterable[str], start: datetime, end: datetime
    ) -> List[TelemetryEvent]:
        """Events of the given types within [start, end), oldest first."""
        ...


def _state_from_row(row: AnalyticsIngestionStateRow) -> IngestionState:
    return IngestionState(
        id=row.id,
        pipeline=row.pipeline,
        last_processed_at=as_utc(row.last_processed_at),
        metadata=row.metadata_json,
        updated_at=as_utc(row.updated_at) if row.updated_at else None,
    )


class SqlAlchemyAnalyticsStore:
    """
    AnalyticsStore backed by an async SQLAlchemy session factory.

    All timestamps are written and returned as aware UTC datetimes.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_ingestion_state(self, pipeline: str) -> Optional[IngestionState]:
        try:
            async with self._session_factory() as session:
                row = await session.scalar(
                    select(AnalyticsIngestionStateRow).where(
                        AnalyticsIngestionStateRow.pipeline == pipeline
                    )
                )
                return _state_from_row(row) if row is not None else None
        except SQLAlchemyError as e:
            raise StateStoreError(f"Failed to load ingestion state for {pipeline}") from e

    async def upsert_ingestion_state(
        self,
        pipeline: str,
        last_processed_at: datetime,
        metadata: Optional[Any] = None,
    ) -> IngestionState:
        now = datetime.now(timezone.utc)
        cursor = as_utc(last_processed_at)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.scalar(
                        select(AnalyticsIngestionStateRow).where(
                            AnalyticsIngestionStateRow.pipeline == pipeline
                        )
                    )
                    if row is None:
                        row = AnalyticsIngestionStateRow(
                            pipeline=pipeline,
                            last_processed_at=cursor,
                            metadata_json=metadata,
                            updated_at=now,
                        )
                        session.add(row)
                    else:
                        row.last_processed_at = cursor
                        row.metadata_json = metadata
                        row.updated_at = now
                    await session.flush()
                    state = _state_from_row(row)
        except SQLAlchemyError as e:
            raise StateStoreError(f"Failed to persist ingestion state for {pipeline}") from e

        return state

    async def fetch_agent_performance(
        self, start: datetime, end: datetime
    ) -> List[AgentPerformanceMetric]:
        stmt = (
            select(AgentPerformanceMetricRow)
            .where(
                AgentPerformanceMetricRow.window_start >= as_utc(start),
                AgentPerformanceMetricRow.window_start < as_utc(end),
            )
            .order_by(AgentPerformanceMetricRow.window_start, AgentPerformanceMetricRow.id)
        )
        rows = await self._fetch(stmt)
        return [
            AgentPerformanceMetric(
                id=row.id,
                agent_stage=row.agent_stage,
                success_rate=row.success_rate,
                fallback_rate=row.fallback_rate,
                human_hand_off_rate=row.human_hand_off_rate,
                avg_latency_ms=float(row.avg_latency_ms),
                tasks_processed=row.tasks_processed,
                window_start=as_utc(row.window_start),
                window_end=as_utc(row.window_end),
            )
            for row in rows
        ]

    async def fetch_quality_observations(
        self, start: datetime, end: datetime
    ) -> List[QualityScoreObservation]:
        stmt = (
            select(QualityScoreObservationRow)
            .where(
                QualityScoreObservationRow.occurred_at >= as_utc(start),
                QualityScoreObservationRow.occurred_at < as_utc(end),
            )
            .order_by(QualityScoreObservationRow.occurred_at, QualityScoreObservationRow.id)
        )
        rows = await self._fetch(stmt)
        return [
            QualityScoreObservation(
                id=row.id,
                agent_stage=row.agent_stage,
                score=row.score,
                occurred_at=as_utc(row.occurred_at),
            )
            for row in rows
        ]

    async def fetch_telemetry_events(
        self, event_types: Iterable[str], start: datetime, end: datetime
    ) -> List[TelemetryEvent]:
        types = [str(getattr(t, "value", t)) for t in event_types]
        if not types:
            return []

        stmt = (
            select(TelemetryEventRow)
            .where(
                TelemetryEventRow.event_type.in_(types),
                TelemetryEventRow.occurred_at >= as_utc(start),
                TelemetryEventRow.occurred_at < as_utc(end),
            )
            .order_by(TelemetryEventRow.occurred_at, TelemetryEventRow.id)
        )
        rows = await self._fetch(stmt)
        return [
            TelemetryEvent(
                id=row.id,
                event_type=row.event_type,
                payload=row.payload or {},
                occurred_at=as_utc(row.occurred_at),
            )
            for row in rows
        ]

    async def _fetch(self, stmt: Any) -> Sequence[Any]:
        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return result.all()
