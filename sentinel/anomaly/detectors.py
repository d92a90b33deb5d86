"""
Anomaly detectors, one per AnomalyRuleType.

Each detector answers one question about one event and returns an
AnomalyResult. Detectors read recorded event history and baselines through
the store; they never write anything except the baseline of a newly seen
source.

Detectors:
    FrequencySpikeDetector: Burst of one severity versus its hourly average
    SourceAnomalyDetector: New source, or source far off its baseline
    ContentAnomalyDetector: Message unlike recent traffic
    TemporalAnomalyDetector: Hour volume far off its usual level
    SecurityClusterDetector: Burst of security-keyword events

Example:
    >>> detector = FrequencySpikeDetector(store)
    >>> result = await detector.detect(rule, event, features, now)
    >>> result.is_anomaly
    False
"""

import re
from datetime import datetime, timedelta
from typing import Dict, Protocol, Type, TypeVar

import structlog

from sentinel.anomaly.baselines import BaselineManager
from sentinel.models.anomaly import (
    AnomalyDetectionRule,
    AnomalyResult,
    AnomalyRuleType,
    ContentAnomalyParams,
    FeatureVector,
    FrequencySpikeParams,
    SecurityClusterParams,
    SourceAnomalyParams,
    TemporalAnomalyParams,
)
from sentinel.models.events import LogEvent
from sentinel.storage.base import AlertStore, EventQuery

logger = structlog.get_logger(__name__)

# Smallest step that turns the store's exclusive lower bound into an inclusive one
_INCLUSIVE = timedelta(microseconds=1)

_WHITESPACE = re.compile(r"\s+")

P = TypeVar("P")


def _parameters(rule: AnomalyDetectionRule, expected: Type[P]) -> P:
    """Return the rule parameters, checking they belong to the detector."""
    params = rule.parameters
    if not isinstance(params, expected):
        raise ValueError(
            f"Anomaly rule {rule.id} carries {type(params).__name__}, "
            f"expected {expected.__name__}"
        )
    return params


def calculate_message_similarity(first: str, second: str) -> float:
    """
    Jaccard similarity of the lower-cased word sets of two messages.

    Args:
        first: First message.
        second: Second message.

    Returns:
        float: Similarity in [0, 1]; identical messages score 1.0.

    Example:
        >>> calculate_message_similarity("disk full on /var", "disk full on /tmp")
        0.6
    """
    words_first = set(_WHITESPACE.split(first.lower()))
    words_second = set(_WHITESPACE.split(second.lower()))
    union = words_first | words_second
    return len(words_first & words_second) / len(union)


class AnomalyDetector(Protocol):
    """Protocol for rule-type specific anomaly detectors."""

    async def detect(
        self,
        rule: AnomalyDetectionRule,
        event: LogEvent,
        features: FeatureVector,
        now: datetime,
    ) -> AnomalyResult:
        """Score one event against one detector rule."""
        ...


class FrequencySpikeDetector:
    """
    Fires when events of one severity spike above their hourly average.

    The historical average covers hours between 7 days and 1 day ago so the
    current burst does not inflate its own baseline.
    """

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    async def detect(
        self,
        rule: AnomalyDetectionRule,
        event: LogEvent,
        features: FeatureVector,
        now: datetime,
    ) -> AnomalyResult:
        params = _parameters(rule, FrequencySpikeParams)

        if event.severity != params.log_level.lower():
            return AnomalyResult.normal()

        recent = await self.store.count_events(
            EventQuery(
                start=now - timedelta(seconds=params.time_window),
                end=now,
                severity=params.log_level.lower(),
            )
        )
        if recent < params.minimum_count:
            return AnomalyResult.normal()

        average = await self.store.historical_hourly_average(
            EventQuery(
                start=now - timedelta(days=7),
                end=now - timedelta(days=1),
                severity=params.log_level.lower(),
            )
        )
        ratio = recent / max(average or 1.0, 1.0)

        if ratio < params.spike_threshold:
            return AnomalyResult.normal()

        return AnomalyResult(
            is_anomaly=True,
            confidence=min(0.9, 0.5 + (ratio - params.spike_threshold) * 0.1),
            description=(
                f"{params.log_level} frequency spike: {recent} events "
                f"({ratio:.1f}x normal)"
            ),
        )


class SourceAnomalyDetector:
    """
    Fires for never-seen sources and for sources far off their baseline.

    The last hour's event count is compared with the source's baseline
    hourly rate. A new source is learned on first sight, so it fires
    exactly once.
    """

    # Relative deviation above which a known source is anomalous
    DEVIATION_LIMIT = 2.0

    def __init__(self, store: AlertStore, baselines: BaselineManager) -> None:
        self.store = store
        self.baselines = baselines

    async def detect(
        self,
        rule: AnomalyDetectionRule,
        event: LogEvent,
        features: FeatureVector,
        now: datetime,
    ) -> AnomalyResult:
        params = _parameters(rule, SourceAnomalyParams)

        source = event.source or "unknown"
        baseline = await self.baselines.get_source_baseline(source)

        if baseline is None:
            await self.baselines.learn_source(source, now)
            return AnomalyResult(
                is_anomaly=True,
                confidence=params.new_source_threshold,
                description=f"New log source detected: {source}",
            )

        expected = baseline.frequency_normal
        if expected <= 0:
            return AnomalyResult.normal()

        actual = await self.store.count_events(
            EventQuery(start=now - timedelta(hours=1), end=now, source=source)
        )
        deviation = abs(actual - expected) / expected
        if deviation <= self.DEVIATION_LIMIT:
            return AnomalyResult.normal()

        return AnomalyResult(
            is_anomaly=True,
            confidence=min(0.9, params.min_confidence + deviation * 0.1),
            description=(
                f"Unusual activity from source {source}: {actual} vs expected {expected:g}"
            ),
        )


class ContentAnomalyDetector:
    """Fires when a message resembles none of the last hour's messages."""

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    async def detect(
        self,
        rule: AnomalyDetectionRule,
        event: LogEvent,
        features: FeatureVector,
        now: datetime,
    ) -> AnomalyResult:
        params = _parameters(rule, ContentAnomalyParams)

        message = event.message
        if len(message) < params.min_message_length:
            return AnomalyResult.normal()

        recent = await self.store.recent_messages(
            since=now - timedelta(hours=1),
            limit=params.pattern_window,
            exclude_event_id=event.id,
        )
        # Nothing to compare against yet
        if not recent:
            return AnomalyResult.normal()

        best = max(calculate_message_similarity(message, other) for other in recent)
        if best >= params.similarity_threshold:
            return AnomalyResult.normal()

        return AnomalyResult(
            is_anomaly=True,
            confidence=min(0.95, 0.6 + (params.similarity_threshold - best) * 0.5),
            description=f"Unusual message pattern detected (similarity: {best:.2f})",
        )


class TemporalAnomalyDetector:
    """
    Fires when today's volume for an hour of day is far off its average.

    The expected value is the per-day average count for the event's hour
    over the ``min_history_days`` full days before today.
    """

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    async def detect(
        self,
        rule: AnomalyDetectionRule,
        event: LogEvent,
        features: FeatureVector,
        now: datetime,
    ) -> AnomalyResult:
        params = _parameters(rule, TemporalAnomalyParams)

        hour = features.hour
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        days = params.min_history_days

        history: Dict[int, int] = await self.store.hourly_counts(
            midnight - timedelta(days=days) - _INCLUSIVE,
            midnight - _INCLUSIVE,
        )
        expected = history.get(hour, 0) / days
        if expected <= 0:
            return AnomalyResult.normal()

        hour_start = midnight + timedelta(hours=hour)
        actual = await self.store.count_events(
            EventQuery(
                start=hour_start - _INCLUSIVE,
                end=hour_start + timedelta(hours=1) - _INCLUSIVE,
            )
        )
        deviation = abs(actual - expected) / expected
        if deviation < params.deviation_threshold:
            return AnomalyResult.normal()

        return AnomalyResult(
            is_anomaly=True,
            confidence=min(0.9, 0.5 + deviation * 0.2),
            description=(
                f"Temporal anomaly at hour {hour}: {actual} vs expected {expected:.1f}"
            ),
        )


class SecurityClusterDetector:
    """Fires when security-keyword events cluster within a short window."""

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    async def detect(
        self,
        rule: AnomalyDetectionRule,
        event: LogEvent,
        features: FeatureVector,
        now: datetime,
    ) -> AnomalyResult:
        params = _parameters(rule, SecurityClusterParams)

        keywords = [keyword.lower() for keyword in params.security_keywords]
        message = event.message.lower()
        if not any(keyword in message for keyword in keywords):
            return AnomalyResult.normal()

        count = await self.store.count_events(
            EventQuery(
                start=now - timedelta(seconds=params.cluster_window),
                end=now,
                keywords=keywords,
            )
        )
        if count < params.cluster_threshold:
            return AnomalyResult.normal()

        return AnomalyResult(
            is_anomaly=True,
            confidence=min(
                0.95,
                rule.confidence_threshold
                * params.confidence_boost
                * (count / params.cluster_threshold),
            ),
            description=(
                f"Security event cluster detected: {count} events "
                f"in {params.cluster_window}s"
            ),
        )


def default_detectors(
    store: AlertStore,
    baselines: BaselineManager,
) -> Dict[AnomalyRuleType, AnomalyDetector]:
    """
    Build one detector per rule type.

    Returns:
        Dict[AnomalyRuleType, AnomalyDetector]: Detectors keyed by rule type.
    """
    return {
        AnomalyRuleType.FREQUENCY_SPIKE: FrequencySpikeDetector(store),
        AnomalyRuleType.SOURCE_ANOMALY: SourceAnomalyDetector(store, baselines),
        AnomalyRuleType.CONTENT_ANOMALY: ContentAnomalyDetector(store),
        AnomalyRuleType.TEMPORAL_ANOMALY: TemporalAnomalyDetector(store),
        AnomalyRuleType.SECURITY_CLUSTER: SecurityClusterDetector(store),
    }

