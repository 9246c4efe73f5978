"""
Interval and cron scheduling for ingestion pipelines.

Provides:
- Cron expression or fixed-interval ticks
- Sequential handler execution (no overlapping ticks per scheduler)
- Stop signal that halts future ticks without aborting an in-flight one
- In-memory tick history
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from analytics_core.ingestion.types import PipelineExecutionError

logger = logging.getLogger(__name__)

TickHandler = Callable[[], Awaitable[None]]

DEFAULT_INTERVAL_MS = 30_000


@dataclass
class ScheduleOptions:
    """How a scheduler decides when to tick."""
    # Cron expression; takes precedence over interval_ms. Six fields put
    # seconds first: "*/30 * * * * *" ticks every 30 seconds.
    expression: Optional[str] = None
    interval_ms: Optional[int] = None

    run_on_init: bool = False
    timezone: str = "UTC"

    max_history: int = 100

    def __post_init__(self) -> None:
        if self.expression is not None and not croniter.is_valid(
            self.expression, second_at_beginning=True
        ):
            raise ValueError(f"Invalid cron expression: {self.expression!r}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from e
        if self.interval_ms is not None and self.interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expression": self.expression,
            "interval_ms": self.interval_ms,
            "run_on_init": self.run_on_init,
            "timezone": self.timezone,
            "max_history": self.max_history,
        }


@dataclass
class ScheduledTick:
    """Record of one handler invocation."""
    label: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    initial: bool = False

    @property
    def duration_seconds(self) -> float:
        if self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "success": self.success,
            "error": self.error,
            "initial": self.initial,
            "duration_seconds": self.duration_seconds,
        }


class CronScheduler:
    """
    Invokes a handler repeatedly on a cron expression or fixed interval.

    Ticks are awaited one at a time, so a slow handler delays the next tick
    instead of running concurrently with it.
    """

    def __init__(
        self,
        label: str,
        handler: TickHandler,
        options: Optional[ScheduleOptions] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            label: Name used in logs (usually the pipeline name)
            handler: Async callable invoked on each tick
            options: Schedule options
        """
        self.label = label
        self.handler = handler
        self.options = options or ScheduleOptions()

        self._tz = ZoneInfo(self.options.timezone)
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._history: List[ScheduledTick] = []
        self._current: Optional[ScheduledTick] = None

    def _seconds_until_next_tick(self, now: Optional[datetime] = None) -> float:
        """Seconds to wait before the next tick."""
        if self.options.expression:
            now = (now or datetime.now(timezone.utc)).astimezone(self._tz)
            next_run = croniter(
                self.options.expression, now, second_at_beginning=True
            ).get_next(datetime)
            return max((next_run - now).total_seconds(), 0.0)

        interval_ms = self.options.interval_ms or DEFAULT_INTERVAL_MS
        return interval_ms / 1000.0

    async def _invoke(self, initial: bool = False) -> None:
        """Run the handler once; exceptions are logged, never raised."""
        tick = ScheduledTick(
            label=self.label,
            started_at=datetime.now(timezone.utc),
            initial=initial,
        )
        self._current = tick

        try:
            await self.handler()
            tick.success = True
        except PipelineExecutionError as e:
            # Already logged with its traceback where the run failed
            tick.error = str(e)
            logger.warning(
                f"[IngestionScheduler] Tick failed for {self.label}: {e}",
                extra={"label": self.label},
            )
        except Exception as e:
            tick.error = str(e)
            stage = "Initial handler run" if initial else "Handler execution"
            logger.error(
                f"[IngestionScheduler] {stage} failed for {self.label}: {e}",
                exc_info=True,
                extra={"label": self.label},
            )
        finally:
            tick.ended_at = datetime.now(timezone.utc)
            self._current = None
            self._history.append(tick)
            if len(self._history) > self.options.max_history:
                self._history = self._history[-self.options.max_history:]

    async def _wait_for_tick(self, delay: float) -> bool:
        """Sleep until the next tick; returns False if stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def _scheduler_loop(self) -> None:
        """Main scheduler loop."""
        if self.options.run_on_init and not self._stop_event.is_set():
            await self._invoke(initial=True)

        while not self._stop_event.is_set():
            delay = self._seconds_until_next_tick()
            if not await self._wait_for_tick(delay):
                break
            await self._invoke()

        logger.debug(f"[IngestionScheduler] Loop exited for {self.label}")

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self._task is not None:
            logger.warning(f"[IngestionScheduler] {self.label} already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(
            self._scheduler_loop(), name=f"scheduler:{self.label}"
        )

    async def stop(self) -> None:
        """Stop future ticks and wait for an in-flight handler to finish."""
        self._stop_event.set()

        task, self._task = self._task, None
        if task is not None:
            await task

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_current_tick(self) -> Optional[ScheduledTick]:
        """Get the tick currently executing, if any."""
        return self._current

    def get_history(self, limit: int = 10, success_only: bool = False) -> List[ScheduledTick]:
        """Get recent tick history."""
        history = self._history
        if success_only:
            history = [t for t in history if t.success]
        return history[-limit:]

    def get_statistics(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        if not self._history:
            return {"label": self.label, "total_ticks": 0}

        successful = [t for t in self._history if t.success]
        durations = [t.duration_seconds for t in self._history]

        return {
            "label": self.label,
            "total_ticks": len(self._history),
            "successful_ticks": len(successful),
            "failed_ticks": len(self._history) - len(successful),
            "success_rate": len(successful) / len(self._history),
            "avg_duration_seconds": sum(durations) / len(durations),
            "last_tick": self._history[-1].to_dict(),
        }


def schedule(
    label: str,
    handler: TickHandler,
    options: Optional[ScheduleOptions] = None,
) -> CronScheduler:
    """Create and start a scheduler; the returned handle exposes stop()."""
    scheduler = CronScheduler(label, handler, options)
    scheduler.start()
    return scheduler
