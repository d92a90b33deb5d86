"""
Configuration management for the alerting and anomaly layer.

Configuration is loaded from YAML files in the config/ directory:
    - rules.yaml: Seed alert rules and notification channels
    - anomaly.yaml: Anomaly detectors, training and schedule settings
    - engine.yaml: Dispatch, logging and storage settings

Environment variables can override connection and logging settings:
    - REDIS_URL, DATABASE_URL, LOG_LEVEL, LOG_FORMAT, SENTINEL_CONFIG_PATH

Example:
    >>> from sentinel.config import load_config
    >>> config = load_config()
    >>> config.anomaly.training.model_name
    'statistical_v1'
"""

from sentinel.config.loader import ConfigLoadError, ConfigLoader, load_config
from sentinel.config.models import (
    AnomalyConfig,
    AppConfig,
    DispatchConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    PostgresConnectionConfig,
    RedisConnectionConfig,
    RulesConfig,
    ScheduleConfig,
    SmtpConfig,
    StorageBackend,
    StorageConfig,
    TrainingConfig,
)

__all__ = [
    # Loader
    "ConfigLoadError",
    "ConfigLoader",
    "load_config",
    # Models
    "AnomalyConfig",
    "AppConfig",
    "DispatchConfig",
    "LogFormat",
    "LoggingConfig",
    "LogLevel",
    "PostgresConnectionConfig",
    "RedisConnectionConfig",
    "RulesConfig",
    "ScheduleConfig",
    "SmtpConfig",
    "StorageBackend",
    "StorageConfig",
    "TrainingConfig",
]
