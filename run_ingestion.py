#!/usr/bin/env python3
"""
Analytics Ingestion Service
===========================

Runs the analytics ingestion orchestrator: every registered pipeline is
scheduled, guarded by a Redis lock, and advances its persisted cursor after
each successful window.

RUN: python3 run_ingestion.py --config config/analytics.yaml

ARCHITECTURE:

    scheduler tick ──► acquire lock ──► load cursor ──► pipeline.run(window)
                            │                                   │
                            └── busy: skip tick                 ▼
                                                 upsert cursor, emit metrics
                                                                │
                                          release lock ◄────────┘ (always)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from redis.asyncio import Redis

from analytics_core.config import AnalyticsConfig, ConfigurationError, load_config
from analytics_core.ingestion import (
    IngestionDependencies,
    IngestionOrchestrator,
    PipelineExecutionError,
    create_ingestion_orchestrator,
)
from analytics_core.storage import (
    SqlAlchemyAnalyticsRecorder,
    SqlAlchemyAnalyticsStore,
    create_all,
    create_engine_and_session,
)
from analytics_core.utils import LoggingConfig, setup_logging

logger = logging.getLogger(__name__)


class IngestionService:
    """Owns the long-lived clients and the orchestrator built on them."""

    def __init__(self, config: AnalyticsConfig, create_tables: bool = False):
        self.config = config
        self.create_tables = create_tables

        self.engine, self.session_factory = create_engine_and_session(
            config.store.database_url, echo=config.store.echo_sql
        )
        self.redis = Redis.from_url(config.store.redis_url)
        self.orchestrator: Optional[IngestionOrchestrator] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> IngestionOrchestrator:
        if self.create_tables:
            logger.info("Creating analytics tables...")
            await create_all(self.engine)

        deps = IngestionDependencies(
            store=SqlAlchemyAnalyticsStore(self.session_factory),
            recorder=SqlAlchemyAnalyticsRecorder(self.session_factory),
            redis=self.redis,
            config=self.config,
            logger=logging.getLogger("analytics_core.ingestion"),
        )
        self.orchestrator = create_ingestion_orchestrator(deps)
        return self.orchestrator

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run_until_shutdown(self) -> None:
        """Run until shutdown signal received."""
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        if self.orchestrator is not None:
            await self.orchestrator.stop()
        await self.redis.aclose()
        await self.engine.dispose()
        logger.info("Ingestion service stopped")


async def main() -> int:
    """Main entry point for the ingestion service."""
    parser = argparse.ArgumentParser(
        description="Analytics Ingestion Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 run_ingestion.py                                  # Defaults + env vars
  python3 run_ingestion.py --config config/analytics.yaml   # YAML config
  python3 run_ingestion.py --create-tables --log-format json
  python3 run_ingestion.py --once analytics-anomalies       # One guarded run
        """,
    )

    parser.add_argument("--config", type=Path, help="Config file or directory of section files")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    parser.add_argument("--once", metavar="PIPELINE", help="Run one pipeline once and exit")

    # Logging
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-format", default="rich", choices=["rich", "json"])
    parser.add_argument("--log-file", type=Path, help="Log file path")

    args = parser.parse_args()

    setup_logging(
        LoggingConfig(level=args.log_level, format=args.log_format, log_file=args.log_file)
    )

    try:
        config = await load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    service = IngestionService(config, create_tables=args.create_tables)
    try:
        orchestrator = await service.start()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        await service.stop()
        return 2

    if args.once:
        try:
            result = await orchestrator.run_once(args.once)
        except KeyError as e:
            logger.error(str(e))
            return 2
        except PipelineExecutionError:
            return 1
        finally:
            await service.stop()

        if result is None:
            logger.info(f"{args.once} skipped (lock held elsewhere)")
        else:
            logger.info(f"{args.once} result: {result.to_dict()}")
        return 0

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal...")
        service.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    await orchestrator.start()
    try:
        await service.run_until_shutdown()
    finally:
        await service.stop()

    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
