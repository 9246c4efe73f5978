"""Tests for the cron / interval scheduler."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from analytics_core.ingestion.scheduler import CronScheduler, ScheduleOptions, schedule
from analytics_core.ingestion.types import PipelineExecutionError

SCHEDULER_LOGGER = "analytics_core.ingestion.scheduler"


@pytest.mark.asyncio
async def test_run_on_init_invokes_immediately():
    calls = []

    async def handler():
        calls.append("tick")

    scheduler = schedule("init", handler, ScheduleOptions(interval_ms=60_000, run_on_init=True))
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert calls == ["tick"]
    assert scheduler.get_history()[0].initial is True


@pytest.mark.asyncio
async def test_without_run_on_init_waits_for_first_tick():
    calls = []

    async def handler():
        calls.append("tick")

    scheduler = schedule("lazy", handler, ScheduleOptions(interval_ms=60_000))
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert calls == []


@pytest.mark.asyncio
async def test_interval_ticks_repeat():
    calls = []

    async def handler():
        calls.append("tick")

    scheduler = schedule("fast", handler, ScheduleOptions(interval_ms=10))
    await asyncio.sleep(0.2)
    await scheduler.stop()

    assert len(calls) >= 3


@pytest.mark.asyncio
async def test_ticks_never_overlap():
    active = 0
    max_active = 0

    async def handler():
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.03)
        active -= 1

    scheduler = schedule("slow", handler, ScheduleOptions(interval_ms=1, run_on_init=True))
    await asyncio.sleep(0.2)
    await scheduler.stop()

    assert max_active == 1
    assert scheduler.get_statistics()["total_ticks"] >= 2


@pytest.mark.asyncio
async def test_stop_lets_in_flight_handler_finish():
    started = asyncio.Event()
    finished = []

    async def handler():
        started.set()
        await asyncio.sleep(0.05)
        finished.append(True)

    scheduler = schedule("drain", handler, ScheduleOptions(interval_ms=60_000, run_on_init=True))
    await started.wait()
    await scheduler.stop()

    assert finished == [True]
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_loop():
    calls = []

    async def handler():
        calls.append("tick")
        raise RuntimeError("boom")

    scheduler = schedule("flaky", handler, ScheduleOptions(interval_ms=10, run_on_init=True))
    await asyncio.sleep(0.1)
    await scheduler.stop()

    stats = scheduler.get_statistics()
    assert len(calls) >= 2
    assert stats["failed_ticks"] == stats["total_ticks"]
    assert stats["last_tick"]["error"] == "boom"


@pytest.mark.asyncio
async def test_pipeline_failure_logged_without_traceback(caplog):
    async def handler():
        raise PipelineExecutionError("analytics-quality", "query failed")

    scheduler = CronScheduler("analytics-quality", handler, ScheduleOptions(interval_ms=60_000))

    with caplog.at_level(logging.WARNING, logger=SCHEDULER_LOGGER):
        await scheduler._invoke()

    records = [r for r in caplog.records if r.name == SCHEDULER_LOGGER]
    assert len(records) == 1
    assert records[0].levelno == logging.WARNING
    assert records[0].exc_info is None
    assert "query failed" in records[0].getMessage()
    assert scheduler.get_history()[0].success is False


@pytest.mark.asyncio
async def test_unexpected_handler_error_keeps_traceback(caplog):
    async def handler():
        raise RuntimeError("boom")

    scheduler = CronScheduler("flaky", handler, ScheduleOptions(interval_ms=60_000))

    with caplog.at_level(logging.WARNING, logger=SCHEDULER_LOGGER):
        await scheduler._invoke()

    records = [r for r in caplog.records if r.name == SCHEDULER_LOGGER]
    assert len(records) == 1
    assert records[0].levelno == logging.ERROR
    assert records[0].exc_info is not None


@pytest.mark.asyncio
async def test_cron_expression_computes_delay():
    async def handler():
        return None

    scheduler = CronScheduler(
        "cron",
        handler,
        ScheduleOptions(expression="*/5 * * * *", timezone="Europe/Berlin"),
    )

    delay = scheduler._seconds_until_next_tick()
    assert 0 <= delay <= 300


def test_six_field_cron_reads_seconds_first():
    async def handler():
        return None

    scheduler = CronScheduler("seconds", handler, ScheduleOptions(expression="30 * * * * *"))
    now = datetime(2025, 11, 4, 12, 0, 5, tzinfo=timezone.utc)

    # second 30 of every minute, not minute 30 of every hour
    assert scheduler._seconds_until_next_tick(now) == 25.0


def test_invalid_options_rejected():
    with pytest.raises(ValueError):
        ScheduleOptions(expression="not a cron")
    with pytest.raises(ValueError):
        ScheduleOptions(interval_ms=0)
    with pytest.raises(ValueError):
        ScheduleOptions(interval_ms=1000, timezone="Mars/Olympus_Mons")


@pytest.mark.asyncio
async def test_history_is_bounded():
    async def handler():
        return None

    scheduler = schedule("bounded", handler, ScheduleOptions(interval_ms=1, max_history=3))
    await asyncio.sleep(0.1)
    await scheduler.stop()

    assert len(scheduler.get_history(limit=100)) <= 3
