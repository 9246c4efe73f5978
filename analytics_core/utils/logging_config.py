"""
Structured logging configuration for the analytics ingestion service.

Features:
- JSON structured logging for production
- Colored console logging for development
- Pipeline/run context propagation across awaits
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

# Context variables for log correlation
_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_pipeline: ContextVar[Optional[str]] = ContextVar("pipeline", default=None)
_extra_context: ContextVar[Dict[str, Any]] = ContextVar("extra_context", default={})

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

# extra= keys the console formatter prints after the message
CONSOLE_EXTRA_KEYS = ("records_processed", "telemetry_events", "duration_ms", "cursor")


def set_run_id(run_id: Optional[str]) -> None:
    """Set the current run ID for log correlation."""
    _run_id.set(run_id)


def set_pipeline(pipeline: Optional[str]) -> None:
    """Set the pipeline currently executing in this task."""
    _pipeline.set(pipeline)


def set_context(**kwargs: Any) -> None:
    """Set additional context fields."""
    _extra_context.set({**_extra_context.get(), **kwargs})


def clear_context() -> None:
    """Clear extra context."""
    _extra_context.set({})


def current_context() -> Dict[str, Any]:
    """Pipeline, run id and extra fields bound to the running task."""
    context: Dict[str, Any] = {}
    pipeline = _pipeline.get()
    run_id = _run_id.get()
    if pipeline:
        context["pipeline"] = pipeline
    if run_id:
        context["run_id"] = run_id
    extra = _extra_context.get()
    if extra:
        context["context"] = dict(extra)
    return context


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed to the logging call through extra=."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": "2025-11-04T12:00:00.123456Z", "level": "INFO",
         "logger": "analytics_core.ingestion.orchestrator",
         "message": "...", "service": "analytics-ingestion",
         "pipeline": "analytics-anomalies", "run_id": "4f1c...",
         "extra": {"records_processed": 2}}
    """

    def __init__(self, service_name: Optional[str] = None):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            log_data["service"] = self.service_name

        log_data.update(current_context())

        extras = record_extras(record)
        if extras:
            log_data["extra"] = extras
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class RichConsoleFormatter(logging.Formatter):
    """Colored single-line output for terminals."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    def _context_label(self, record: logging.LogRecord) -> str:
        context = current_context()
        pipeline = context.get("pipeline") or getattr(record, "pipeline", None)
        parts = []
        if pipeline:
            parts.append(f"pipeline={pipeline}")
        if "run_id" in context:
            parts.append(f"run={context['run_id'][:8]}")
        return f" [{', '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        line = (
            f"{self.DIM}{timestamp}{self.RESET} "
            f"{color}{self.BOLD}{record.levelname:8}{self.RESET} "
            f"{self.DIM}{record.name}{self.RESET}"
            f"{self._context_label(record)}: "
            f"{record.getMessage()}"
        )

        shown = [
            f"{key}={getattr(record, key)}"
            for key in CONSOLE_EXTRA_KEYS
            if getattr(record, key, None) is not None
        ]
        if shown:
            line += f" {self.DIM}({', '.join(shown)}){self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(
        default_factory=lambda: os.getenv("ANALYTICS_LOG_LEVEL", "INFO")
    )
    format: str = field(
        default_factory=lambda: os.getenv("ANALYTICS_LOG_FORMAT", "rich")
    )  # "rich" or "json"

    log_file: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["ANALYTICS_LOG_FILE"])
        if os.getenv("ANALYTICS_LOG_FILE") else None
    )
    max_file_size_mb: int = 50
    backup_count: int = 5

    console_enabled: bool = True
    service_name: Optional[str] = field(
        default_factory=lambda: os.getenv("ANALYTICS_SERVICE_NAME", "analytics-ingestion")
    )

    quiet_loggers: List[str] = field(
        default_factory=lambda: [
            "sqlalchemy.engine",
            "aiosqlite",
            "redis",
            "asyncio",
        ]
    )


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure the root logger for the ingestion service.

    The file handler, when configured, always writes JSON regardless of the
    console format.
    """
    config = config or LoggingConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers: List[logging.Handler] = []

    if config.console_enabled:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(
            StructuredFormatter(config.service_name)
            if config.format == "json"
            else RichConsoleFormatter()
        )
        handlers.append(console)

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        file_handler.setFormatter(StructuredFormatter(config.service_name))
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        root_logger.addHandler(handler)

    for logger_name in config.quiet_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
    logging.getLogger("analytics_core").setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class LogContext:
    """
    Context manager binding a pipeline (and optional run id) to log records.

    Example:
        with LogContext(pipeline="analytics-anomalies", run_id=run_id):
            logger.info("Window processed")  # carries pipeline and run id
    """

    def __init__(
        self,
        pipeline: Optional[str] = None,
        run_id: Optional[str] = None,
        **kwargs: Any,
    ):
        self._pipeline = pipeline
        self._run_id = run_id
        self._context = kwargs
        self._tokens: list = []

    def __enter__(self) -> "LogContext":
        if self._pipeline is not None:
            self._tokens.append((_pipeline, _pipeline.set(self._pipeline)))
        if self._run_id is not None:
            self._tokens.append((_run_id, _run_id.set(self._run_id)))
        if self._context:
            merged = {**_extra_context.get(), **self._context}
            self._tokens.append((_extra_context, _extra_context.set(merged)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
