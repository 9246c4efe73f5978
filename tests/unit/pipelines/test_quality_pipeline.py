"""Tests for the quality score and agent performance pipelines."""

from __future__ import annotations

from datetime import timedelta

import pytest

from analytics_core.config import QualityScoreConfig
from analytics_core.ingestion.pipelines.agent_performance import (
    AgentPerformancePipeline,
    derive_stage,
)
from analytics_core.ingestion.pipelines.quality import (
    QualityScorePipeline,
    compute_quality_score,
    normalize_drivers,
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


# =============================================================================
# Quality score
# =============================================================================


def test_compute_quality_score_baseline_case():
    # raw = -0.25 + 3.2 * 0.75 - 2.6 * 0.25 = 1.5 -> 1.5 * 20 + 50
    assert compute_quality_score(QualityScoreConfig(), 0.75, 1500, 0, 0, 0) == 80.0


def test_compute_quality_score_is_clamped():
    config = QualityScoreConfig()
    assert compute_quality_score(config, 0.0, 1_000_000, 1, 1, 1) == 0.0
    assert compute_quality_score(config, 1.0, 0, 0, 0, 0) == 100.0


def test_normalize_drivers_keeps_numbers():
    assert normalize_drivers({"a": 1, "b": "2.5", "c": "x", "d": True}) == {"a": 1.0, "b": 2.5}
    assert normalize_drivers(None) == {}


@pytest.mark.asyncio
async def test_quality_pipeline_records_one_score_per_stage(config):
    store = InMemoryStore(
        events=[
            telemetry_event("agent.task.completed", {"agentStage": "plan", "latencyMs": 1500}, _at(1)),
            telemetry_event("agent.task.completed", {"agentStage": "plan", "latencyMs": 1500}, _at(2)),
            telemetry_event(
                "agent.task.completed",
                {"agentStage": "plan", "latencyMs": 1500, "drivers": {"tokens": 3}},
                _at(3),
            ),
            telemetry_event("agent.task.failed", {"agentStage": "plan", "latencyMs": 1500}, _at(4)),
            telemetry_event("agent.task.completed", {"latencyMs": 10}, _at(5)),
        ]
    )
    recorder = RecordingRecorder()

    result = await QualityScorePipeline(config).run(build_context(store, recorder, config))

    assert result.records_processed == 1
    assert result.telemetry_events_scanned == 5
    assert any("insufficient samples" in w for w in result.warnings)

    entry = recorder.quality[0]
    assert entry.agent_stage == "plan"
    assert entry.score == 80.0
    assert entry.occurred_at == WINDOW_END
    assert entry.drivers["successRate"] == pytest.approx(0.75)
    assert entry.drivers["samples"] == 4
    assert entry.drivers["tokens"] == 3.0


@pytest.mark.asyncio
async def test_quality_pipeline_empty_window(config):
    recorder = RecordingRecorder()

    result = await QualityScorePipeline(config).run(
        build_context(InMemoryStore(), recorder, config)
    )

    assert result.records_processed == 0
    assert result.warnings == ["No telemetry events detected in window"]
    assert recorder.total_calls == 0


# =============================================================================
# Agent performance
# =============================================================================


def test_derive_stage_precedence():
    assert derive_stage({"agentStage": " plan ", "stage": "x"}) == "plan"
    assert derive_stage({"stageId": "s-1", "stageName": "Build"}) == "s-1"
    assert derive_stage({"stage": "deploy"}) == "deploy"
    assert derive_stage({"stage": "   "}) is None
    assert derive_stage({}) is None


@pytest.mark.asyncio
async def test_agent_performance_rollup(config):
    store = InMemoryStore(
        events=[
            telemetry_event(
                "agent.stage.completed",
                {"stageId": "build", "latencyMs": 100, "retries": 2},
                _at(1),
            ),
            telemetry_event(
                "agent.stage.completed",
                {"stageId": "build", "metadata": {"latencyMs": "300", "host": "a"}, "fallback": True},
                _at(2),
            ),
            telemetry_event(
                "agent.stage.failed",
                {"stageId": "build", "latencyMs": 200, "humanHandOff": True},
                _at(3),
            ),
            telemetry_event(
                "analytics.agent-performance",
                {"stage": "review", "status": "in-progress"},
                _at(4),
            ),
        ]
    )
    recorder = RecordingRecorder()

    result = await AgentPerformancePipeline(config).run(build_context(store, recorder, config))

    assert result.records_processed == 1
    assert result.telemetry_events_scanned == 4
    assert result.warnings == ["Stage review had no completed tasks in window."]
    assert result.metadata["stages"] == ["build", "review"]

    entry = recorder.performance[0]
    assert entry.agent_stage == "build"
    assert entry.tasks_processed == 3
    assert entry.avg_latency_ms == 200
    assert entry.success_rate == pytest.approx(0.6667)
    assert entry.fallback_rate == pytest.approx(0.3333)
    assert entry.human_hand_off_rate == pytest.approx(0.3333)
    assert entry.metadata["latencyMin"] == 100
    assert entry.metadata["latencyMax"] == 300
    assert entry.metadata["retries"] == 2
    assert entry.metadata["samples"] == [{"latencyMs": "300", "host": "a"}]
    assert entry.window_start == WINDOW_START
    assert entry.window_end == WINDOW_END
