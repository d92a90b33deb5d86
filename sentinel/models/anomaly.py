"""
Anomaly detection data models.

This module defines the anomaly rule catalogue with typed per-rule
parameters, detector results and persisted detections, learned baseline
patterns, the per-event feature vector, and the statistical model produced
by training.

Models:
    AnomalyRuleType: Detector variants
    AnomalySeverity: Severity derived from confidence
    FrequencySpikeParams, SourceAnomalyParams, ContentAnomalyParams,
    TemporalAnomalyParams, SecurityClusterParams: Per-detector parameters
    AnomalyDetectionRule: Configured detector
    AnomalyResult: Output of one detector for one event
    AnomalyDetection: Persisted anomaly record
    PatternType, BaselinePattern: Learned normal frequencies
    FeatureVector: Per-event feature summary
    ClassStats, FeatureStats, StatisticalModel, ModelPrediction: Trained model
    TrainingExample: Weighted labelled feature sample
    AnomalyStatistics: Aggregate anomaly counts
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from sentinel.models.events import utc_now


class AnomalyRuleType(str, Enum):
    """Anomaly detector variants."""

    FREQUENCY_SPIKE = "frequency_spike"
    SOURCE_ANOMALY = "source_anomaly"
    CONTENT_ANOMALY = "content_anomaly"
    TEMPORAL_ANOMALY = "temporal_anomaly"
    SECURITY_CLUSTER = "security_cluster"


class AnomalySeverity(str, Enum):
    """
    Anomaly severity, derived from confidence.

    Attributes:
        CRITICAL: confidence >= 0.9
        HIGH: confidence >= 0.8
        MEDIUM: confidence >= 0.6
        LOW: anything lower
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_confidence(cls, confidence: float) -> "AnomalySeverity":
        """Map a confidence score to a severity band."""
        if confidence >= 0.9:
            return cls.CRITICAL
        if confidence >= 0.8:
            return cls.HIGH
        if confidence >= 0.6:
            return cls.MEDIUM
        return cls.LOW


# =============================================================================
# DETECTOR PARAMETERS
# =============================================================================


class FrequencySpikeParams(BaseModel):
    """Parameters for the frequency spike detector."""

    model_config = {"frozen": True, "extra": "forbid"}

    log_level: str = Field(default="error", description="Severity being counted")
    time_window: int = Field(default=300, description="Trailing window in seconds", gt=0)
    spike_threshold: float = Field(default=3.0, description="Spike ratio that fires", gt=0)
    minimum_count: int = Field(default=5, description="Minimum events in window", ge=1)


class SourceAnomalyParams(BaseModel):
    """Parameters for the source anomaly detector."""

    model_config = {"frozen": True, "extra": "forbid"}

    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    learning_period_days: int = Field(default=7, ge=1)
    new_source_threshold: float = Field(
        default=0.8,
        description="Confidence assigned to a never-seen source",
        ge=0.0,
        le=1.0,
    )


class ContentAnomalyParams(BaseModel):
    """Parameters for the content anomaly detector."""

    model_config = {"frozen": True, "extra": "forbid"}

    similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    min_message_length: int = Field(default=10, ge=0)
    pattern_window: int = Field(
        default=1000,
        description="Maximum recent messages compared against",
        ge=1,
    )


class TemporalAnomalyParams(BaseModel):
    """Parameters for the temporal anomaly detector."""

    model_config = {"frozen": True, "extra": "forbid"}

    time_buckets: int = Field(default=24, ge=1)
    deviation_threshold: float = Field(default=2.0, gt=0)
    min_history_days: int = Field(default=3, ge=1)


class SecurityClusterParams(BaseModel):
    """Parameters for the security cluster detector."""

    model_config = {"frozen": True, "extra": "forbid"}

    cluster_window: int = Field(default=600, description="Window in seconds", gt=0)
    security_keywords: List[str] = Field(
        default_factory=lambda: ["failed", "unauthorized", "denied", "blocked", "attack"],
        min_length=1,
    )
    cluster_threshold: int = Field(default=5, ge=1)
    confidence_boost: float = Field(default=1.2, gt=0)


AnomalyParameters = Union[
    FrequencySpikeParams,
    SourceAnomalyParams,
    ContentAnomalyParams,
    TemporalAnomalyParams,
    SecurityClusterParams,
]

PARAMETER_MODELS = {
    AnomalyRuleType.FREQUENCY_SPIKE: FrequencySpikeParams,
    AnomalyRuleType.SOURCE_ANOMALY: SourceAnomalyParams,
    AnomalyRuleType.CONTENT_ANOMALY: ContentAnomalyParams,
    AnomalyRuleType.TEMPORAL_ANOMALY: TemporalAnomalyParams,
    AnomalyRuleType.SECURITY_CLUSTER: SecurityClusterParams,
}


class AnomalyDetectionRule(BaseModel):
    """
    A configured anomaly detector.

    Attributes:
        id: Rule identifier.
        name: Human-readable name.
        description: Free-text description.
        rule_type: Detector variant.
        parameters: Parameters matching the detector variant.
        confidence_threshold: Base confidence of the rule.
        enabled: Whether the detector runs.
        usage_count: Number of anomalies this rule produced.
        accuracy_rating: Optional accuracy estimate from feedback.

    Example:
        >>> rule = AnomalyDetectionRule(
        ...     name="Error Frequency Spike",
        ...     rule_type=AnomalyRuleType.FREQUENCY_SPIKE,
        ...     parameters={"log_level": "error", "spike_threshold": 3.0},
        ...     confidence_threshold=0.8,
        ... )
    """

    model_config = {"extra": "forbid"}

    id: str = Field(default_factory=lambda: str(uuid4()), min_length=1)
    name: str = Field(..., min_length=1)
    description: str = Field(default="")
    rule_type: AnomalyRuleType
    parameters: AnomalyParameters
    confidence_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    enabled: bool = Field(default=True)
    usage_count: int = Field(default=0, ge=0)
    accuracy_rating: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def coerce_parameters(cls, data: Any) -> Any:
        """Validate parameters against the model for the rule type."""
        if not isinstance(data, dict):
            return data
        raw_type = data.get("rule_type")
        params = data.get("parameters", {})
        if raw_type is None or not isinstance(params, dict):
            return data
        try:
            rule_type = AnomalyRuleType(raw_type)
        except ValueError:
            return data
        return {**data, "parameters": PARAMETER_MODELS[rule_type].model_validate(params)}

    @model_validator(mode="after")
    def check_parameters_type(self) -> "AnomalyDetectionRule":
        """Ensure parameters match the rule type."""
        expected = PARAMETER_MODELS[self.rule_type]
        if not isinstance(self.parameters, expected):
            raise ValueError(
                f"Rule type '{self.rule_type.value}' requires {expected.__name__}"
            )
        return self


class AnomalyResult(BaseModel):
    """
    Output of one detector for one event.

    Attributes:
        is_anomaly: Whether the detector fired.
        confidence: Confidence in [0, 1].
        description: Human-readable explanation.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    is_anomaly: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    description: str = ""

    @classmethod
    def normal(cls, description: str = "") -> "AnomalyResult":
        """Result for an event that is not anomalous."""
        return cls(is_anomaly=False, confidence=0.0, description=description)


class AnomalyDetection(BaseModel):
    """
    A persisted anomaly.

    Attributes:
        id: Detection identifier.
        timestamp: When the anomaly was detected.
        source_event_id: Event that produced the anomaly.
        rule_id: Detector rule that fired.
        anomaly_type: Detector variant.
        severity: Severity derived from confidence.
        confidence_score: Detector confidence.
        description: Detector explanation.
        context: Feature vector of the source event.
        resolved: Whether an operator resolved the anomaly.
        resolved_at: When it was resolved.
        resolved_by: Who resolved it.
        false_positive: Whether an operator flagged it as a false positive.
    """

    model_config = {"extra": "forbid"}

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=utc_now)
    source_event_id: str
    rule_id: Optional[str] = None
    anomaly_type: AnomalyRuleType
    severity: AnomalySeverity
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    description: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    false_positive: bool = False

    def resolve(
        self,
        resolved_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "AnomalyDetection":
        """Mark the anomaly resolved."""
        return self.model_copy(
            update={
                "resolved": True,
                "resolved_at": timestamp or utc_now(),
                "resolved_by": resolved_by,
            }
        )

    def mark_false_positive(
        self,
        resolved_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "AnomalyDetection":
        """Flag the anomaly as a false positive; this also resolves it."""
        return self.resolve(resolved_by, timestamp).model_copy(
            update={"false_positive": True}
        )


# =============================================================================
# BASELINES
# =============================================================================


class PatternType(str, Enum):
    """Baseline dimension."""

    SOURCE = "source"
    HOURLY = "hourly"


class BaselinePattern(BaseModel):
    """
    Learned normal frequency for one dimension value.

    Attributes:
        pattern_type: Dimension (source or hour-of-day).
        signature: Dimension value (source name or two-digit hour).
        frequency_normal: Normal event count for the dimension value.
        last_seen: Last time the pattern was refreshed.
        occurrence_count: Observed count at the last refresh.
        is_baseline: True when computed by the periodic baseline job.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    pattern_type: PatternType
    signature: str
    frequency_normal: float = Field(default=1.0, ge=0.0)
    last_seen: datetime = Field(default_factory=utc_now)
    occurrence_count: int = Field(default=0, ge=0)
    is_baseline: bool = False

    @property
    def key(self) -> str:
        """Unique key of this pattern."""
        return f"{self.pattern_type.value}:{self.signature}"


# =============================================================================
# FEATURES AND MODEL
# =============================================================================

BOOLEAN_FEATURES = (
    "has_numbers",
    "has_special_chars",
    "contains_ip",
    "contains_url",
    "contains_email",
)


class FeatureVector(BaseModel):
    """
    Fixed-shape summary of one event.

    Attributes:
        hour: Hour of day (0-23, UTC).
        day_of_week: Day of week (Monday = 0).
        severity_level: Ordinal severity (debug 0 ... fatal 5).
        source_hash: Bounded hash of the source (0-9999).
        message_length: Characters in the message.
        has_numbers: Message contains a digit.
        has_special_chars: Message contains punctuation.
        contains_ip: Message contains an IPv4 address.
        contains_url: Message contains an http(s) URL.
        contains_email: Message contains an email address.
        word_count: Whitespace-separated words.
        upper_case_ratio: Upper-case characters over message length.
        security_score: Fraction of security keywords present.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    hour: int = Field(..., ge=0, le=23)
    day_of_week: int = Field(..., ge=0, le=6)
    severity_level: int = Field(..., ge=0, le=5)
    source_hash: int = Field(..., ge=0, lt=10000)
    message_length: int = Field(..., ge=0)
    has_numbers: bool
    has_special_chars: bool
    contains_ip: bool
    contains_url: bool
    contains_email: bool
    word_count: int = Field(..., ge=0)
    upper_case_ratio: float = Field(..., ge=0.0, le=1.0)
    security_score: float = Field(..., ge=0.0, le=1.0)

    def numeric_features(self) -> Dict[str, float]:
        """
        Numeric (non-boolean) features used for model training.

        Returns:
            Dict[str, float]: Feature name to value.
        """
        return {
            name: float(value)
            for name, value in self.model_dump().items()
            if name not in BOOLEAN_FEATURES
        }


class ClassStats(BaseModel):
    """Summary statistics of one feature within one class."""

    model_config = {"frozen": True, "extra": "forbid"}

    mean: float
    std: float
    min: float
    max: float


class FeatureStats(BaseModel):
    """Per-class statistics of one feature."""

    model_config = {"frozen": True, "extra": "forbid"}

    anomaly: ClassStats
    normal: ClassStats


class ModelPrediction(BaseModel):
    """
    Prediction of the statistical model for one feature set.

    Attributes:
        is_anomaly: True when more than half of the features vote anomaly.
        confidence: Fraction of features voting anomaly.
        votes: Number of features nearer the anomaly-class mean.
        feature_count: Number of features compared.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    is_anomaly: bool
    confidence: float
    votes: int
    feature_count: int


class StatisticalModel(BaseModel):
    """
    Per-feature mean/std midpoint classifier.

    Attributes:
        name: Model name; at most one active model per name.
        feature_stats: Per-feature, per-class statistics.
        thresholds: Per-feature midpoint between the class means.
        accuracy_score: Validation accuracy.
        training_date: When the model was trained.
        is_active: Whether this is the active model for its name.
        anomaly_samples: Positive examples used.
        normal_samples: Negative examples used.
        version: Monotonic version per name, assigned by the store.
    """

    model_config = {"extra": "forbid"}

    name: str
    feature_stats: Dict[str, FeatureStats]
    thresholds: Dict[str, float]
    accuracy_score: float = Field(default=0.0, ge=0.0, le=1.0)
    training_date: datetime = Field(default_factory=utc_now)
    is_active: bool = True
    anomaly_samples: int = Field(default=0, ge=0)
    normal_samples: int = Field(default=0, ge=0)
    version: int = Field(default=1, ge=1)

    def predict(self, features: Dict[str, float]) -> ModelPrediction:
        """
        Classify a feature set.

        A feature votes "anomaly" when its value is strictly nearer the
        anomaly-class mean than the normal-class mean. Features missing from
        the input are not counted.

        Args:
            features: Feature name to numeric value.

        Returns:
            ModelPrediction: Vote outcome.
        """
        votes = 0
        compared = 0
        for name, stats in self.feature_stats.items():
            value = features.get(name)
            if value is None:
                continue
            compared += 1
            if abs(value - stats.anomaly.mean) < abs(value - stats.normal.mean):
                votes += 1
        confidence = votes / compared if compared else 0.0
        return ModelPrediction(
            is_anomaly=confidence > 0.5,
            confidence=confidence,
            votes=votes,
            feature_count=compared,
        )


class TrainingExample(BaseModel):
    """A labelled, weighted feature sample."""

    model_config = {"frozen": True, "extra": "forbid"}

    features: Dict[str, float]
    is_anomaly: bool
    weight: float = Field(default=1.0, gt=0)


class AnomalyStatistics(BaseModel):
    """
    Aggregate anomaly counts.

    Attributes:
        total: All stored anomalies.
        last_24h: Anomalies detected in the last 24 hours.
        unresolved: Anomalies not yet resolved.
        false_positives: Anomalies flagged as false positives.
        by_severity: Counts over the last 7 days keyed by severity.
        by_type: Counts keyed by detector type.
        top_rules: Enabled detector rules ordered by usage.
        active_model: Summary of the active statistical model, if any.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    total: int = 0
    last_24h: int = 0
    unresolved: int = 0
    false_positives: int = 0
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    top_rules: List[Dict[str, Any]] = Field(default_factory=list)
    active_model: Optional[Dict[str, Any]] = None
