"""
Utilities module for the analytics ingestion service.

Provides:
- Structured logging configuration
- Log context propagation
"""

from analytics_core.utils.logging_config import (
    setup_logging,
    get_logger,
    LoggingConfig,
    LogContext,
    StructuredFormatter,
    RichConsoleFormatter,
    current_context,
    set_run_id,
    set_pipeline,
    set_context,
    clear_context,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "LogContext",
    "StructuredFormatter",
    "RichConsoleFormatter",
    "current_context",
    "set_run_id",
    "set_pipeline",
    "set_context",
    "clear_context",
]
