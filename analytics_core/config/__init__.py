"""
Configuration module for the analytics ingestion service.

Provides dataclass-based configuration with:
- YAML file loading
- Environment variable interpolation
- Type validation
- Sensible defaults
"""

from analytics_core.config.base_config import (
    BaseConfig,
    ConfigurationError,
    IngestionConfig,
    AnomalyConfig,
    QualityWeights,
    QualityScoreConfig,
    StoreConfig,
    AnalyticsConfig,
    load_config,
)

__all__ = [
    "BaseConfig",
    "ConfigurationError",
    "IngestionConfig",
    "AnomalyConfig",
    "QualityWeights",
    "QualityScoreConfig",
    "StoreConfig",
    "AnalyticsConfig",
    "load_config",
]
