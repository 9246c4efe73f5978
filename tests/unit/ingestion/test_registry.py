"""Tests for the pipeline registry."""

from __future__ import annotations

import pytest

from analytics_core.config import AnalyticsConfig, AnomalyConfig, ConfigurationError
from analytics_core.ingestion.constants import AnalyticsPipeline
from analytics_core.ingestion.registry import create_pipeline_registry


def test_registry_order_and_names(config):
    names = [definition.name for definition in create_pipeline_registry(config)]

    assert names == [
        AnalyticsPipeline.QUALITY.value,
        AnalyticsPipeline.AGENT_PERFORMANCE.value,
        AnalyticsPipeline.USER_ENGAGEMENT.value,
        AnalyticsPipeline.REPOSITORY.value,
        AnalyticsPipeline.ANOMALIES.value,
    ]
    assert len(set(names)) == len(names)


def test_registry_uses_configured_interval(config):
    config.ingestion.interval_ms = 45_000

    definitions = create_pipeline_registry(config)

    assert {definition.interval_ms for definition in definitions} == {45_000}
    assert all(definition.description for definition in definitions)


def test_invalid_anomaly_thresholds_fail_registry():
    config = AnalyticsConfig(anomalies=AnomalyConfig(std_deviations=float("inf")))

    with pytest.raises(ConfigurationError):
        create_pipeline_registry(config)
