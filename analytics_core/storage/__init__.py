"""
Storage module for the analytics ingestion service.

Provides:
- ORM tables for ingestion state, telemetry inputs and analytics outputs
- AnalyticsStore / AnalyticsRecorder contracts and SQLAlchemy implementations
- Engine and session factory helpers
"""

from __future__ import annotations

from typing import Tuple

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from analytics_core.storage.models import Base
from analytics_core.storage.records import (
    AgentPerformanceMetric,
    AgentPerformanceRecord,
    AnomalyRecord,
    AnomalySeverity,
    IngestionState,
    QualityScoreObservation,
    QualityScoreRecord,
    RepositoryAnalyticsRecord,
    TelemetryEvent,
    UserEngagementRecord,
    as_utc,
)
from analytics_core.storage.recorder import AnalyticsRecorder, SqlAlchemyAnalyticsRecorder
from analytics_core.storage.store import (
    AnalyticsStore,
    SqlAlchemyAnalyticsStore,
    StateStoreError,
)


def create_engine_and_session(
    database_url: str,
    echo: bool = False,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine and a session factory bound to it."""
    engine = create_async_engine(database_url, echo=echo)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create every table that does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    # Tables
    "Base",
    # Rows and records
    "AgentPerformanceMetric",
    "AgentPerformanceRecord",
    "AnomalyRecord",
    "AnomalySeverity",
    "IngestionState",
    "QualityScoreObservation",
    "QualityScoreRecord",
    "RepositoryAnalyticsRecord",
    "TelemetryEvent",
    "UserEngagementRecord",
    # Contracts
    "AnalyticsStore",
    "AnalyticsRecorder",
    "StateStoreError",
    # Implementations
    "SqlAlchemyAnalyticsStore",
    "SqlAlchemyAnalyticsRecorder",
    "create_engine_and_session",
    "create_all",
    "as_utc",
]
