"""
Shared fixtures for the ingestion tests.
"""

import sys
from pathlib import Path

import pytest
from opentelemetry import trace

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from analytics_core.config import AnalyticsConfig, AnomalyConfig
from tests.helpers import FakeRedis, InMemoryStore, RecordingRecorder


@pytest.fixture
def config():
    return AnalyticsConfig(
        anomalies=AnomalyConfig(
            min_samples=1,
            std_deviations=2.5,
            critical_success_rate=0.6,
            warning_latency_factor=1.5,
        )
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def recorder():
    return RecordingRecorder()


@pytest.fixture
def tracer():
    return trace.NoOpTracer()
