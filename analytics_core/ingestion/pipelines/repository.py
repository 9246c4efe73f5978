"""
Repository analytics pipeline.

Groups commit activity and coverage snapshots by (repository, branch):

- commit velocity: commits in the window normalized to commits per day
- coverage drift: coverage - previousCoverage of the most recent snapshot
- refactor hotspots: merged across events, capped at MAX_HOTSPOT_ENTRIES
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from analytics_core.ingestion.constants import AnalyticsPipeline, TelemetryEventType
from analytics_core.ingestion.pipelines.base import BasePipeline, clean_key, to_number
from analytics_core.ingestion.types import PipelineContext, PipelineResult
from analytics_core.storage.records import RepositoryAnalyticsRecord, TelemetryEvent

if TYPE_CHECKING:
    from opentelemetry.trace import Span

logger = logging.getLogger(__name__)

REPOSITORY_EVENT_TYPES = [
    TelemetryEventType.COMMIT_ACTIVITY.value,
    TelemetryEventType.COVERAGE_SNAPSHOT.value,
]

NO_EVENTS_WARNING = "No repository telemetry events detected in window"

MAX_HOTSPOT_ENTRIES = 100
METADATA_SAMPLE_CAP = 50
SECONDS_PER_DAY = 86_400

GroupKey = Tuple[str, Optional[str]]


@dataclass
class RepositoryAccumulator:
    commits: float = 0.0
    commit_events: int = 0
    snapshot: Optional[Dict[str, Any]] = None
    hotspots: Dict[str, Any] = field(default_factory=dict)
    metadata_samples: List[Dict[str, Any]] = field(default_factory=list)


def merge_hotspots(target: Dict[str, Any], source: Any) -> None:
    """Merge stripped, non-empty hotspot paths into target up to the cap."""
    if not isinstance(source, dict):
        return
    for path, data in source.items():
        key = clean_key(path)
        if not key:
            continue
        if key not in target and len(target) >= MAX_HOTSPOT_ENTRIES:
            continue
        target[key] = data


def coverage_drift(snapshot: Optional[Dict[str, Any]]) -> float:
    """Drift from a snapshot payload; 0.0 when not derivable."""
    if not snapshot:
        return 0.0
    explicit = to_number(snapshot.get("coverageDrift"))
    if explicit is not None:
        return explicit
    coverage = to_number(snapshot.get("coverage"))
    previous = to_number(snapshot.get("previousCoverage"))
    if coverage is not None and previous is not None:
        return coverage - previous
    return 0.0


def commits_per_day(commits: float, window_seconds: float) -> float:
    if window_seconds <= 0:
        return commits
    return commits * SECONDS_PER_DAY / window_seconds


class RepositoryAnalyticsPipeline(BasePipeline):
    """Derives per-branch repository health metrics from telemetry."""

    name = AnalyticsPipeline.REPOSITORY.value
    description = (
        "Aggregates repository-level analytics including commit velocity, "
        "coverage drift and refactor hotspots."
    )

    def accumulate(self, events: List[TelemetryEvent]) -> Dict[GroupKey, RepositoryAccumulator]:
        groups: Dict[GroupKey, RepositoryAccumulator] = {}

        # Events arrive ordered by occurred_at, so the last snapshot seen wins.
        for event in events:
            payload = event.payload if isinstance(event.payload, dict) else {}
            repository = clean_key(payload.get("repository"))
            if not repository:
                continue
            branch = clean_key(payload.get("branch"))

            acc = groups.setdefault((repository, branch), RepositoryAccumulator())

            if event.event_type == TelemetryEventType.COMMIT_ACTIVITY.value:
                commits = to_number(payload.get("commits"))
                if commits is not None:
                    acc.commits += commits
                    acc.commit_events += 1
            elif event.event_type == TelemetryEventType.COVERAGE_SNAPSHOT.value:
                acc.snapshot = payload

            merge_hotspots(acc.hotspots, payload.get("refactorHotspots"))

            metadata = payload.get("metadata")
            if isinstance(metadata, dict) and len(acc.metadata_samples) < METADATA_SAMPLE_CAP:
                acc.metadata_samples.append(metadata)

        return groups

    async def _execute(self, context: PipelineContext, span: "Span") -> PipelineResult:
        window = context.window

        events = await context.store.fetch_telemetry_events(
            REPOSITORY_EVENT_TYPES, window.start, window.end
        )

        if not events:
            span.add_event("No repository telemetry in window")
            return PipelineResult(
                pipeline=self.name,
                records_processed=0,
                telemetry_events_scanned=0,
                warnings=[NO_EVENTS_WARNING],
            )

        groups = self.accumulate(events)
        warnings: List[str] = []
        records = 0

        for (repository, branch), acc in groups.items():
            velocity = round(commits_per_day(acc.commits, window.duration_seconds), 4)
            drift = round(coverage_drift(acc.snapshot), 4)

            if acc.snapshot is None:
                warnings.append(
                    f"Repository {repository} ({branch or 'default'}) has no coverage "
                    "snapshot in window; coverage drift defaults to 0."
                )

            metadata: Dict[str, Any] = {
                "windowStart": window.start.isoformat(),
                "windowEnd": window.end.isoformat(),
                "commits": acc.commits,
                "commitEvents": acc.commit_events,
            }
            if acc.metadata_samples:
                metadata["samples"] = acc.metadata_samples

            await context.recorder.record_repository_analytics(
                RepositoryAnalyticsRecord(
                    repository=repository,
                    branch=branch,
                    commit_velocity=velocity,
                    coverage_drift=drift,
                    window_start=window.start,
                    window_end=window.end,
                    refactor_hotspots=acc.hotspots,
                    metadata=metadata,
                )
            )
            records += 1

        logger.debug(f"Repository analytics recorded for {records} group(s)")

        return PipelineResult(
            pipeline=self.name,
            records_processed=records,
            telemetry_events_scanned=len(events),
            warnings=warnings,
            metadata={
                "repositories": sorted({repository for repository, _ in groups}),
            },
        )
