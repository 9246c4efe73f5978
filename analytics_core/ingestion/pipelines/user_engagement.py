"""
User engagement pipeline.

Folds session, collaboration and feature-usage telemetry into a single
UserEngagementRecord per window. Explicit aggregate fields on
analytics.user-engagement events take precedence over counts derived from
individual session events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Set

from analytics_core.ingestion.constants import AnalyticsPipeline, TelemetryEventType
from analytics_core.ingestion.pipelines.base import BasePipeline, clean_key, to_number
from analytics_core.ingestion.types import PipelineContext, PipelineResult
from analytics_core.storage.records import TelemetryEvent, UserEngagementRecord

if TYPE_CHECKING:
    from opentelemetry.trace import Span

logger = logging.getLogger(__name__)

ENGAGEMENT_EVENT_TYPES = [
    TelemetryEventType.SESSION_STARTED.value,
    TelemetryEventType.SESSION_ENDED.value,
    TelemetryEventType.COLLABORATION_SESSION_STARTED.value,
    TelemetryEventType.COLLABORATION_SESSION_ENDED.value,
    TelemetryEventType.FEATURE_USED.value,
    TelemetryEventType.USER_ENGAGEMENT.value,
]

FEATURE_USAGE_CAP = 100
METADATA_SAMPLE_CAP = 25


@dataclass
class EngagementAccumulator:
    users: Set[str] = field(default_factory=set)
    collaboration_sessions: Set[str] = field(default_factory=set)
    session_count: int = 0
    duration_total: float = 0.0
    duration_samples: int = 0
    explicit_active_users: float = 0.0
    explicit_collaboration_sessions: float = 0.0
    explicit_avg_duration: float = 0.0
    feature_usage: Dict[str, float] = field(default_factory=dict)
    retention_cohorts: Dict[str, int] = field(default_factory=dict)
    metadata_samples: List[Dict[str, Any]] = field(default_factory=list)

    def add_feature(self, feature: str, count: float) -> None:
        self.feature_usage[feature] = self.feature_usage.get(feature, 0.0) + count

    # A zero explicit aggregate counts as absent
    @property
    def active_users(self) -> int:
        return int(self.explicit_active_users) or len(self.users)

    @property
    def collaboration_count(self) -> int:
        return int(self.explicit_collaboration_sessions) or len(self.collaboration_sessions)

    @property
    def avg_session_duration(self) -> float:
        if self.explicit_avg_duration:
            return self.explicit_avg_duration
        if self.duration_samples:
            return self.duration_total / self.duration_samples
        return 0.0


def _keep_max(current: float, value: Any) -> float:
    parsed = to_number(value)
    return current if parsed is None else max(current, parsed)


def top_features(usage: Dict[str, float], cap: int = FEATURE_USAGE_CAP) -> Dict[str, float]:
    """Highest-count features first, at most `cap` of them, rounded to 2 places."""
    ranked = sorted(usage.items(), key=lambda item: item[1], reverse=True)[:cap]
    return {feature: round(count, 2) for feature, count in ranked}


class UserEngagementPipeline(BasePipeline):
    """Aggregates active users, session length and feature usage."""

    name = AnalyticsPipeline.USER_ENGAGEMENT.value
    description = (
        "Summarises active users, collaboration sessions, and feature usage "
        "into UserEngagementMetric records."
    )

    def accumulate(self, events: List[TelemetryEvent]) -> EngagementAccumulator:
        acc = EngagementAccumulator()

        for event in events:
            payload = event.payload if isinstance(event.payload, dict) else {}

            nested = payload.get("metadata")
            if isinstance(nested, dict) and nested and len(acc.metadata_samples) < METADATA_SAMPLE_CAP:
                acc.metadata_samples.append(nested)

            acc.explicit_active_users = _keep_max(
                acc.explicit_active_users, payload.get("activeUsers")
            )
            acc.explicit_collaboration_sessions = _keep_max(
                acc.explicit_collaboration_sessions, payload.get("collaborationSessions")
            )
            acc.explicit_avg_duration = _keep_max(
                acc.explicit_avg_duration, payload.get("avgSessionDurationSec")
            )

            user = clean_key(payload.get("userId"))
            if user:
                acc.users.add(user)

            collaboration = clean_key(payload.get("collaborationSessionId"))
            if collaboration:
                acc.collaboration_sessions.add(collaboration)

            if clean_key(payload.get("sessionId")):
                acc.session_count += 1
                duration = to_number(payload.get("durationSec"))
                if duration is not None:
                    acc.duration_total += duration
                    acc.duration_samples += 1

            usage = payload.get("featureUsage")
            if isinstance(usage, dict):
                for raw_feature, raw_count in usage.items():
                    feature = clean_key(raw_feature)
                    count = to_number(raw_count)
                    if feature and count is not None and count > 0:
                        acc.add_feature(feature, count)

            feature = clean_key(payload.get("feature"))
            if feature:
                acc.add_feature(feature, 1.0)

            cohort = clean_key(payload.get("retentionCohort"))
            if cohort:
                acc.retention_cohorts[cohort] = acc.retention_cohorts.get(cohort, 0) + 1

        return acc

    async def _execute(self, context: PipelineContext, span: "Span") -> PipelineResult:
        window = context.window

        events = await context.store.fetch_telemetry_events(
            ENGAGEMENT_EVENT_TYPES, window.start, window.end
        )

        if not events:
            span.add_event("No engagement telemetry in window")
            return PipelineResult(
                pipeline=self.name,
                warnings=["No engagement telemetry events detected in window"],
            )

        acc = self.accumulate(events)

        metadata: Dict[str, Any] = {
            "sessionCount": acc.session_count,
            "windowStart": window.start.isoformat(),
            "windowEnd": window.end.isoformat(),
        }
        if acc.metadata_samples:
            metadata["metadataSamples"] = acc.metadata_samples

        await context.recorder.record_user_engagement(
            UserEngagementRecord(
                window_start=window.start,
                window_end=window.end,
                active_users=acc.active_users,
                collaboration_sessions=acc.collaboration_count,
                avg_session_duration_sec=round(acc.avg_session_duration, 2),
                feature_usage=top_features(acc.feature_usage),
                retention_cohorts=dict(acc.retention_cohorts) or None,
                metadata=metadata,
            )
        )

        span.set_attribute("analytics.pipeline.activeUsers", acc.active_users)
        logger.debug(
            f"User engagement recorded: {acc.active_users} active user(s), "
            f"{acc.session_count} session(s)"
        )

        return PipelineResult(
            pipeline=self.name,
            records_processed=1,
            telemetry_events_scanned=len(events),
            metadata={
                "activeUsers": acc.active_users,
                "collaborationSessions": acc.collaboration_count,
            },
        )
