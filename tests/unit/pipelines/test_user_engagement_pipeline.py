"""Tests for the user engagement pipeline."""

from __future__ import annotations

from datetime import timedelta

import pytest

from analytics_core.ingestion.pipelines.user_engagement import (
    UserEngagementPipeline,
    top_features,
)
from tests.helpers import (
    WINDOW_END,
    WINDOW_START,
    InMemoryStore,
    RecordingRecorder,
    build_context,
    telemetry_event,
)


def _at(minutes: int):
    return WINDOW_START + timedelta(minutes=minutes)


def test_top_features_ranks_caps_and_rounds():
    usage = {"a": 1.004, "b": 5.0, "c": 3.0}

    assert top_features(usage, cap=2) == {"b": 5.0, "c": 3.0}
    assert top_features(usage)["a"] == 1.0


@pytest.mark.asyncio
async def test_sessions_and_feature_usage_become_one_record(config):
    store = InMemoryStore(
        events=[
            telemetry_event(
                "session.started",
                {
                    "userId": "user1",
                    "sessionId": "session1",
                    "durationSec": 1800,
                    "metadata": {"client": "web"},
                },
                _at(1),
            ),
            telemetry_event(
                "feature.used",
                {
                    "userId": "user2",
                    "feature": "codegen",
                    "featureUsage": {"codegen": 3},
                    "metadata": {"client": "cli"},
                },
                _at(2),
            ),
        ]
    )
    recorder = RecordingRecorder()

    result = await UserEngagementPipeline(config).run(build_context(store, recorder, config))

    assert result.records_processed == 1
    assert result.telemetry_events_scanned == 2
    assert result.metadata["activeUsers"] == 2

    entry = recorder.engagement[0]
    assert entry.window_start == WINDOW_START
    assert entry.window_end == WINDOW_END
    assert entry.active_users == 2
    assert entry.collaboration_sessions == 0
    assert entry.avg_session_duration_sec == 1800.0
    assert entry.feature_usage == {"codegen": 4.0}
    assert entry.retention_cohorts is None
    assert entry.metadata["sessionCount"] == 1
    assert entry.metadata["metadataSamples"] == [{"client": "web"}, {"client": "cli"}]


@pytest.mark.asyncio
async def test_explicit_aggregates_take_precedence(config):
    store = InMemoryStore(
        events=[
            telemetry_event(
                "analytics.user-engagement",
                {"activeUsers": 12, "collaborationSessions": "3", "avgSessionDurationSec": 95.254},
                _at(1),
            ),
            telemetry_event(
                "analytics.user-engagement",
                {"activeUsers": 7},
                _at(2),
            ),
            telemetry_event(
                "collaboration.session.started",
                {"userId": "user1", "collaborationSessionId": "c1", "retentionCohort": "2025-W44"},
                _at(3),
            ),
            telemetry_event(
                "session.ended",
                {"userId": " user1 ", "sessionId": "s1", "retentionCohort": "2025-W44"},
                _at(4),
            ),
        ]
    )
    recorder = RecordingRecorder()

    await UserEngagementPipeline(config).run(build_context(store, recorder, config))

    entry = recorder.engagement[0]
    assert entry.active_users == 12
    assert entry.collaboration_sessions == 3
    assert entry.avg_session_duration_sec == 95.25
    assert entry.retention_cohorts == {"2025-W44": 2}
    assert entry.metadata["sessionCount"] == 1


@pytest.mark.asyncio
async def test_derived_counts_skip_invalid_feature_entries(config):
    store = InMemoryStore(
        events=[
            telemetry_event(
                "session.started",
                {"userId": "user1", "sessionId": "s1", "durationSec": 60},
                _at(1),
            ),
            telemetry_event(
                "session.started",
                {"userId": "user1", "sessionId": "s2", "durationSec": "120"},
                _at(2),
            ),
            telemetry_event(
                "session.started",
                {"userId": "user3", "sessionId": "s3"},
                _at(3),
            ),
            telemetry_event(
                "feature.used",
                {"featureUsage": {" search ": 2, "": 5, "review": 0, "chat": "x"}},
                _at(4),
            ),
            telemetry_event("analytics.user-engagement", {"activeUsers": 0}, _at(5)),
        ]
    )
    recorder = RecordingRecorder()

    await UserEngagementPipeline(config).run(build_context(store, recorder, config))

    entry = recorder.engagement[0]
    assert entry.active_users == 2
    assert entry.avg_session_duration_sec == 90.0
    assert entry.feature_usage == {"search": 2.0}
    assert entry.metadata["sessionCount"] == 3
    assert "metadataSamples" not in entry.metadata


@pytest.mark.asyncio
async def test_empty_window_records_nothing(config):
    recorder = RecordingRecorder()

    result = await UserEngagementPipeline(config).run(
        build_context(InMemoryStore(), recorder, config)
    )

    assert result.records_processed == 0
    assert result.telemetry_events_scanned == 0
    assert result.warnings == ["No engagement telemetry events detected in window"]
    assert recorder.total_calls == 0


@pytest.mark.asyncio
async def test_events_outside_window_are_ignored(config):
    store = InMemoryStore(
        events=[
            telemetry_event("session.started", {"userId": "late", "sessionId": "s9"}, WINDOW_END),
        ]
    )
    recorder = RecordingRecorder()

    result = await UserEngagementPipeline(config).run(build_context(store, recorder, config))

    assert result.records_processed == 0
    assert recorder.engagement == []
