"""
Base configuration system for the analytics ingestion service.

Features:
- Dataclass-based configuration with type hints
- YAML file loading with environment variable interpolation
- Validation and defaults resolved once at startup
"""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    TypeVar,
    Type,
    Union,
    get_type_hints,
)
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseConfig")


class ConfigurationError(ValueError):
    """Raised when configuration is missing or invalid at startup."""


def _interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in config values.

    Supports formats:
    - ${VAR_NAME} - Required, raises if not set
    - ${VAR_NAME:-default} - Optional with default
    - ${VAR_NAME:?error message} - Required with custom error
    """
    if isinstance(value, str):
        pattern = r"\$\{([A-Z_][A-Z0-9_]*)(?:(:-)([^}]*))?(?:(:\?)([^}]*))?\}"

        def replace_var(match: re.Match) -> str:
            var_name = match.group(1)
            has_default = match.group(2) is not None
            default_value = match.group(3) or ""
            has_error = match.group(4) is not None
            error_msg = match.group(5) or f"Required environment variable {var_name} is not set"

            env_value = os.environ.get(var_name)

            if env_value is not None:
                return env_value
            elif has_default:
                return default_value
            elif has_error:
                raise ConfigurationError(error_msg)
            else:
                if match.group(0) == value:
                    raise ConfigurationError(f"Environment variable {var_name} is not set")
                return match.group(0)

        result = re.sub(pattern, replace_var, value)

        if result.startswith("~"):
            result = str(Path(result).expanduser())

        return result

    elif isinstance(value, dict):
        return {k: _interpolate_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_interpolate_env_vars(item) for item in value]

    return value


def _coerce_type(value: Any, target_type: Any) -> Any:
    """Coerce a value to the target type."""
    if value is None:
        return None

    origin = getattr(target_type, "__origin__", None)

    # Optional[X]
    if origin is Union:
        args = target_type.__args__
        if type(None) in args:
            non_none_types = [t for t in args if t is not type(None)]
            if len(non_none_types) == 1:
                return _coerce_type(value, non_none_types[0])
        return value

    # Nested config sections
    if isinstance(target_type, type) and issubclass(target_type, BaseConfig):
        if isinstance(value, target_type):
            return value
        if isinstance(value, dict):
            return target_type.from_dict(value)
        return value

    if target_type is Path:
        return Path(value).expanduser() if value else None

    if origin is list:
        item_type = target_type.__args__[0] if target_type.__args__ else str
        if isinstance(value, list):
            return [_coerce_type(item, item_type) for item in value]
        if isinstance(value, str):
            return [_coerce_type(item.strip(), item_type) for item in value.split(",") if item.strip()]
        return [_coerce_type(value, item_type)]

    if origin is dict:
        if isinstance(value, dict):
            return dict(value)
        return value

    # bool("false") is True
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is int:
        return int(float(value)) if value != "" else 0
    if target_type is float:
        return float(value) if value != "" else 0.0

    if target_type is str:
        return str(value)

    return value


@dataclass
class BaseConfig:
    """
    Base configuration class with YAML loading and env var interpolation.
    """

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create config from dictionary with env var interpolation."""
        interpolated = _interpolate_env_vars(data or {})

        field_types = get_type_hints(cls)
        known = {f.name for f in fields(cls)}

        # Unknown keys are ignored so older config files keep loading
        filtered = {}
        for key, value in interpolated.items():
            if key in known:
                filtered[key] = _coerce_type(value, field_types[key])

        return cls(**filtered)

    @classmethod
    def from_yaml(cls: Type[T], path: Union[str, Path]) -> T:
        """Load config from YAML file with env var interpolation."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_env(cls: Type[T], prefix: str = "") -> T:
        """Create config entirely from environment variables."""
        data = {}

        for field_info in fields(cls):
            env_key = f"{prefix}{field_info.name}".upper()
            env_value = os.environ.get(env_key)

            if env_value is not None:
                data[field_info.name] = env_value

        return cls.from_dict(data) if data else cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        result = {}
        for key, value in asdict(self).items():
            if isinstance(value, Path):
                result[key] = str(value)
            elif isinstance(value, datetime):
                result[key] = value.isoformat()
            else:
                result[key] = value
        return result

    def merge(self: T, other: Dict[str, Any]) -> T:
        """Create new config with overrides merged in."""
        current = self.to_dict()
        interpolated = _interpolate_env_vars(other)
        for key, value in interpolated.items():
            if isinstance(value, dict) and isinstance(current.get(key), dict):
                current[key] = {**current[key], **value}
            else:
                current[key] = value
        return self.__class__.from_dict(current)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class IngestionConfig(BaseConfig):
    """Scheduling and windowing configuration shared by all pipelines."""

    interval_ms: int = field(
        default_factory=lambda: _env_int("ANALYTICS_INGEST_INTERVAL_MS", 300_000)
    )
    # Initial lookback for a pipeline without persisted state
    window_minutes: int = field(
        default_factory=lambda: _env_int("ANALYTICS_WINDOW_MINUTES", 60)
    )

    # Lock TTL = max(interval_ms * lock_grace_factor, lock_min_ttl_ms)
    lock_grace_factor: float = 2.0
    lock_min_ttl_ms: int = 60_000
    lock_key_prefix: str = "analytics:ingestion:"

    timezone: str = field(
        default_factory=lambda: os.getenv("ANALYTICS_TIMEZONE", "UTC")
    )

    # pipeline name -> cron expression; overrides interval_ms. A six-field
    # expression carries seconds first ("0 */5 * * * *").
    schedules: Dict[str, str] = field(default_factory=dict)

    # Empty means every registered pipeline
    enabled_pipelines: List[str] = field(default_factory=list)

    def lock_ttl_ms(self, interval_ms: int) -> int:
        """TTL for a pipeline's lock given its run interval."""
        return int(max(interval_ms * self.lock_grace_factor, self.lock_min_ttl_ms))


@dataclass
class AnomalyConfig(BaseConfig):
    """Thresholds for the anomaly detection pipeline."""

    min_samples: int = field(
        default_factory=lambda: _env_int("ANALYTICS_ANOMALY_MIN_SAMPLES", 5)
    )
    std_deviations: float = field(
        default_factory=lambda: _env_float("ANALYTICS_ANOMALY_STD_DEVIATIONS", 2.5)
    )
    critical_success_rate: float = field(
        default_factory=lambda: _env_float("ANALYTICS_ANOMALY_CRITICAL_SUCCESS", 0.6)
    )
    warning_latency_factor: float = field(
        default_factory=lambda: _env_float("ANALYTICS_ANOMALY_LATENCY_FACTOR", 1.5)
    )

    def validate(self) -> None:
        """
        Check every threshold is present and in range.

        Raises:
            ConfigurationError: If a threshold is missing or invalid.
        """
        values = {
            "min_samples": self.min_samples,
            "std_deviations": self.std_deviations,
            "critical_success_rate": self.critical_success_rate,
            "warning_latency_factor": self.warning_latency_factor,
        }
        for name, value in values.items():
            if value is None:
                raise ConfigurationError(f"analytics.anomalies.{name} is required")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(
                    f"analytics.anomalies.{name} must be numeric, got {value!r}"
                )
            if not math.isfinite(value):
                raise ConfigurationError(f"analytics.anomalies.{name} must be finite")

        if self.min_samples < 1:
            raise ConfigurationError("analytics.anomalies.min_samples must be >= 1")
        if self.std_deviations < 0:
            raise ConfigurationError("analytics.anomalies.std_deviations must be >= 0")
        if not 0.0 <= self.critical_success_rate <= 1.0:
            raise ConfigurationError(
                "analytics.anomalies.critical_success_rate must be within [0, 1]"
            )
        if self.warning_latency_factor <= 0:
            raise ConfigurationError(
                "analytics.anomalies.warning_latency_factor must be > 0"
            )


@dataclass
class QualityWeights(BaseConfig):
    """Coefficients of the quality score model."""

    success_rate: float = 3.2
    failure_rate: float = -2.6
    latency: float = -0.9
    fallback_rate: float = -1.2
    human_hand_off_rate: float = -1.6
    retry_rate: float = -0.8


@dataclass
class QualityScoreConfig(BaseConfig):
    """Configuration for the quality score pipeline."""

    base_intercept: float = field(
        default_factory=lambda: _env_float("ANALYTICS_QUALITY_BASE", -0.25)
    )
    latency_baseline_ms: float = field(
        default_factory=lambda: _env_float("ANALYTICS_QUALITY_LATENCY_BASELINE_MS", 1500.0)
    )
    confident_task_count: int = field(
        default_factory=lambda: _env_int("ANALYTICS_QUALITY_CONFIDENT_TASKS", 20)
    )
    weights: QualityWeights = field(default_factory=QualityWeights)


@dataclass
class StoreConfig(BaseConfig):
    """Connection settings for the relational store and the lock cache."""

    database_url: str = field(
        default_factory=lambda: os.getenv(
            "ANALYTICS_DATABASE_URL", "sqlite+aiosqlite:///./analytics.db"
        )
    )
    redis_url: str = field(
        default_factory=lambda: os.getenv("ANALYTICS_REDIS_URL", "redis://localhost:6379/0")
    )
    echo_sql: bool = False


_SECTIONS = {
    "ingestion": IngestionConfig,
    "anomalies": AnomalyConfig,
    "quality_score": QualityScoreConfig,
    "store": StoreConfig,
}


@dataclass
class AnalyticsConfig(BaseConfig):
    """
    Master configuration combining every ingestion component.
    """

    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    anomalies: AnomalyConfig = field(default_factory=AnomalyConfig)
    quality_score: QualityScoreConfig = field(default_factory=QualityScoreConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    service_name: str = field(
        default_factory=lambda: os.getenv("ANALYTICS_SERVICE_NAME", "analytics-ingestion")
    )

    @classmethod
    def from_yaml_dir(cls, config_dir: Union[str, Path]) -> "AnalyticsConfig":
        """Load config from a directory of per-section YAML files."""
        config_dir = Path(config_dir)
        sections: Dict[str, Any] = {}

        for name, section_cls in _SECTIONS.items():
            section_file = config_dir / f"{name}.yaml"
            if section_file.exists():
                sections[name] = section_cls.from_yaml(section_file)

        return cls(**sections)


async def load_config(path: Optional[Union[str, Path]] = None) -> AnalyticsConfig:
    """
    Load configuration.

    Args:
        path: Path to config file or directory. If None, uses defaults.

    Returns:
        A fresh AnalyticsConfig instance with anomaly thresholds validated.
    """
    if path is None:
        config = AnalyticsConfig()
    elif Path(path).is_dir():
        config = AnalyticsConfig.from_yaml_dir(path)
    else:
        config = AnalyticsConfig.from_yaml(path)

    config.anomalies.validate()
    logger.info(
        f"Configuration loaded: interval={config.ingestion.interval_ms}ms "
        f"window={config.ingestion.window_minutes}min"
    )
    return config
