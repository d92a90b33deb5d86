"""
Data models for the alerting and anomaly layer.

All models are Pydantic v2 models. Value objects are frozen; lifecycle
records (rules, channels, alerts, detections) are updated through helper
methods that return new instances via model_copy.

Modules:
    events: LogEvent and time helpers
    channels: Notification channel configuration and results
    alerts: Alert lifecycle models
    rules: Alert rule and condition models
    anomaly: Anomaly detection, baseline and training models
"""

from sentinel.models.alerts import (
    Alert,
    AlertHistoryFilter,
    AlertSeverity,
    AlertStatistics,
    AlertStatus,
)
from sentinel.models.anomaly import (
    AnomalyDetection,
    AnomalyDetectionRule,
    AnomalyResult,
    AnomalyRuleType,
    AnomalySeverity,
    AnomalyStatistics,
    BaselinePattern,
    ClassStats,
    ContentAnomalyParams,
    FeatureStats,
    FeatureVector,
    FrequencySpikeParams,
    ModelPrediction,
    PatternType,
    SecurityClusterParams,
    SourceAnomalyParams,
    StatisticalModel,
    TemporalAnomalyParams,
    TrainingExample,
)
from sentinel.models.channels import (
    ChannelType,
    NotificationChannelConfig,
    NotificationResult,
    RenderedMessage,
)
from sentinel.models.events import LogEvent, ensure_utc, utc_now
from sentinel.models.rules import (
    AlertRule,
    EscalationLevel,
    PatternCondition,
    RateCondition,
    RuleType,
)

__all__ = [
    # Events
    "LogEvent",
    "utc_now",
    "ensure_utc",
    # Channels
    "ChannelType",
    "NotificationChannelConfig",
    "NotificationResult",
    "RenderedMessage",
    # Alerts
    "Alert",
    "AlertHistoryFilter",
    "AlertSeverity",
    "AlertStatistics",
    "AlertStatus",
    # Rules
    "AlertRule",
    "EscalationLevel",
    "PatternCondition",
    "RateCondition",
    "RuleType",
    # Anomaly
    "AnomalyDetection",
    "AnomalyDetectionRule",
    "AnomalyResult",
    "AnomalyRuleType",
    "AnomalySeverity",
    "AnomalyStatistics",
    "BaselinePattern",
    "ClassStats",
    "ContentAnomalyParams",
    "FeatureStats",
    "FeatureVector",
    "FrequencySpikeParams",
    "ModelPrediction",
    "PatternType",
    "SecurityClusterParams",
    "SourceAnomalyParams",
    "StatisticalModel",
    "TemporalAnomalyParams",
    "TrainingExample",
]
