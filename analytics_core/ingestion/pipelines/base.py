"""
Shared machinery for analytics pipelines.

A pipeline subclasses BasePipeline and implements _execute(); run() wraps
it in a tracing span, measures duration and fills window defaults.
"""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, Optional

from analytics_core.ingestion.types import (
    PipelineContext,
    PipelineDefinition,
    PipelineResult,
    PipelineWindow,
)

if TYPE_CHECKING:
    from opentelemetry.trace import Span

    from analytics_core.config import AnalyticsConfig


def to_number(value: Any) -> Optional[float]:
    """Parse a finite number from a JSON payload value."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def clean_key(value: Any) -> Optional[str]:
    """Strip a string identifier; None for blanks and non-strings."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def window_metadata(window: PipelineWindow) -> Dict[str, Any]:
    return {
        "windowStart": window.start.isoformat(),
        "windowEnd": window.end.isoformat(),
    }


class BasePipeline(ABC):
    """
    Base class for pipelines registered with the orchestrator.

    Subclasses set `name` and `description` and implement _execute().
    """

    name: str = ""
    description: str = ""

    def __init__(self, config: "AnalyticsConfig"):
        self.config = config

    @property
    def interval_ms(self) -> int:
        return self.config.ingestion.interval_ms

    @property
    def span_name(self) -> str:
        return f"analytics.pipeline.{self.name.removeprefix('analytics-')}"

    def definition(self) -> PipelineDefinition:
        """Registry entry bound to this pipeline's run()."""
        return PipelineDefinition(
            name=self.name,
            description=self.description,
            interval_ms=self.interval_ms,
            run=self.run,
        )

    @abstractmethod
    async def _execute(self, context: PipelineContext, span: "Span") -> PipelineResult:
        """Process context.window and return the (untimed) result."""
        ...

    async def run(self, context: PipelineContext) -> PipelineResult:
        """Run over context.window; exceptions are recorded on the span and re-raised."""
        started = time.perf_counter()

        with context.tracer.start_as_current_span(self.span_name) as span:
            result = await self._execute(context, span)
            duration_ms = int((time.perf_counter() - started) * 1000)

            span.set_attribute("analytics.pipeline.records", result.records_processed)
            span.set_attribute("analytics.pipeline.durationMs", duration_ms)
            span.set_attribute(
                "analytics.pipeline.telemetryEvents", result.telemetry_events_scanned
            )

        metadata = {**window_metadata(context.window), **(result.metadata or {})}
        return replace(
            result,
            duration_ms=duration_ms,
            metadata=metadata,
            next_cursor=result.next_cursor or context.window.end,
        )
