"""
Anomaly scorer for per-event anomaly detection.

This module provides the AnomalyScorer class which runs every enabled
anomaly detector rule against an event, persists the anomalies found and
feeds high-confidence anomalies back into rule-based alerting.

Key Features:
    - One detector per AnomalyRuleType, isolated from each other
    - Every anomaly persisted with the event's feature vector as context
    - Bounded buffer of recent anomalies
    - Anomalies at or above the alert confidence re-enter alerting as
      synthetic events
    - Operator feedback: resolve and false-positive flags

Example:
    >>> scorer = AnomalyScorer(store, alert_callback=manager.process_event)
    >>> await scorer.load_rules()
    >>> detections = await scorer.analyze(event)
"""

from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence

import structlog

from sentinel.anomaly.baselines import BaselineManager
from sentinel.anomaly.detectors import AnomalyDetector, default_detectors
from sentinel.anomaly.features import FeatureExtractor
from sentinel.detection.defaults import default_anomaly_rules
from sentinel.errors import PersistenceError
from sentinel.models.anomaly import (
    AnomalyDetection,
    AnomalyDetectionRule,
    AnomalyResult,
    AnomalySeverity,
    AnomalyStatistics,
    FeatureVector,
)
from sentinel.models.events import LogEvent, utc_now
from sentinel.storage.base import AlertStore

logger = structlog.get_logger(__name__)

AnomalyAlertCallback = Callable[[LogEvent, datetime], Awaitable[Any]]

# Default configuration values
DEFAULT_ALERT_CONFIDENCE = 0.8
DEFAULT_RECENT_BUFFER_SIZE = 100


class AnomalyScorer:
    """
    Scores events with the configured anomaly detectors.

    Attributes:
        store: Persistence collaborator.
        extractor: Feature extractor.
        baselines: Baseline manager shared with the periodic refresh.
        detectors: Detectors keyed by rule type.
        alert_callback: Receives synthetic anomaly events for alerting.
        alert_confidence: Confidence at which an anomaly raises an alert.
        stats: Running counters.

    Example:
        >>> scorer = AnomalyScorer(
        ...     store=store,
        ...     alert_callback=manager.process_event,
        ...     alert_confidence=0.8,
        ... )
        >>> await scorer.load_rules(seed_rules=config.anomaly.rules)
    """

    def __init__(
        self,
        store: AlertStore,
        extractor: Optional[FeatureExtractor] = None,
        baselines: Optional[BaselineManager] = None,
        detectors: Optional[Dict[Any, AnomalyDetector]] = None,
        alert_callback: Optional[AnomalyAlertCallback] = None,
        alert_confidence: float = DEFAULT_ALERT_CONFIDENCE,
        recent_buffer_size: int = DEFAULT_RECENT_BUFFER_SIZE,
    ) -> None:
        """
        Initialize the AnomalyScorer.

        Args:
            store: Persistence collaborator.
            extractor: Feature extractor (default: FeatureExtractor()).
            baselines: Baseline manager (default: built on ``store``).
            detectors: Detectors keyed by rule type (default: all five).
            alert_callback: Async callback fed with synthetic anomaly events.
            alert_confidence: Minimum confidence that raises an alert.
            recent_buffer_size: Recent anomalies kept in memory.
        """
        self.store = store
        self.extractor = extractor or FeatureExtractor()
        self.baselines = baselines or BaselineManager(store)
        self.detectors = detectors or default_detectors(store, self.baselines)
        self.alert_callback = alert_callback
        self.alert_confidence = alert_confidence
        self._rules: Dict[str, AnomalyDetectionRule] = {}
        self._recent: Deque[AnomalyDetection] = deque(maxlen=recent_buffer_size)
        self.stats: Dict[str, int] = {
            "events_analyzed": 0,
            "anomalies_detected": 0,
            "alerts_raised": 0,
            "detector_errors": 0,
        }

    # =========================================================================
    # RULES
    # =========================================================================

    async def load_rules(
        self,
        seed_rules: Optional[Sequence[AnomalyDetectionRule]] = None,
    ) -> List[AnomalyDetectionRule]:
        """
        Load detector rules from the store.

        When the store is empty the seed rules (or the built-in set) are
        used and persisted. When the store fails they are used without
        persisting.

        Args:
            seed_rules: Configured detector rules.

        Returns:
            List[AnomalyDetectionRule]: Loaded rules.
        """
        fallback = list(seed_rules) if seed_rules else default_anomaly_rules()
        try:
            rules = await self.store.load_anomaly_rules()
        except PersistenceError as e:
            logger.error("anomaly_rule_load_failed", **e.log_fields())
            rules = fallback
        else:
            if not rules:
                rules = fallback
                for rule in rules:
                    await self._persist(rule)

        self._rules = {rule.id: rule for rule in rules}
        logger.info(
            "anomaly_rules_loaded",
            count=len(self._rules),
            enabled=sum(1 for r in self._rules.values() if r.enabled),
        )
        return self.rules()

    async def _persist(self, rule: AnomalyDetectionRule) -> None:
        try:
            await self.store.save_anomaly_rule(rule)
        except PersistenceError as e:
            logger.warning("anomaly_rule_persist_failed", rule_id=rule.id, error=str(e))

    def rules(self) -> List[AnomalyDetectionRule]:
        """All loaded detector rules."""
        return list(self._rules.values())

    def get_rule(self, rule_id: str) -> Optional[AnomalyDetectionRule]:
        """Get a detector rule by id."""
        return self._rules.get(rule_id)

    async def save_rule(self, rule: AnomalyDetectionRule) -> AnomalyDetectionRule:
        """
        Add or replace a detector rule.

        Returns:
            AnomalyDetectionRule: The registered rule.
        """
        self._rules[rule.id] = rule
        await self._persist(rule)
        logger.info("anomaly_rule_saved", rule_id=rule.id, rule_type=rule.rule_type.value)
        return rule

    # =========================================================================
    # SCORING
    # =========================================================================

    async def evaluate_rule(
        self,
        rule: AnomalyDetectionRule,
        event: LogEvent,
        features: FeatureVector,
        now: Optional[datetime] = None,
    ) -> AnomalyResult:
        """
        Run one detector rule against an event.

        Detector failures are logged and reported as "not an anomaly".

        Returns:
            AnomalyResult: Detector outcome.
        """
        now = now or utc_now()
        detector = self.detectors.get(rule.rule_type)
        if detector is None:
            logger.warning(
                "anomaly_detector_missing",
                rule_id=rule.id,
                anomaly_type=rule.rule_type.value,
            )
            return AnomalyResult.normal()

        try:
            return await detector.detect(rule, event, features, now)
        except Exception as e:
            self.stats["detector_errors"] += 1
            logger.error(
                "anomaly_detector_failed",
                rule_id=rule.id,
                anomaly_type=rule.rule_type.value,
                event_id=event.id,
                error=str(e),
            )
            return AnomalyResult.normal()

    async def analyze(
        self,
        event: LogEvent,
        now: Optional[datetime] = None,
    ) -> List[AnomalyDetection]:
        """
        Score an event against every enabled detector rule.

        Args:
            event: Event to score (already recorded in the history).
            now: Scoring time, defaults to now.

        Returns:
            List[AnomalyDetection]: Anomalies found, in rule order.
        """
        now = now or utc_now()
        self.stats["events_analyzed"] += 1
        features = self.extractor.extract(event)

        found = []
        for rule in self.rules():
            if not rule.enabled:
                continue
            result = await self.evaluate_rule(rule, event, features, now)
            if result.is_anomaly:
                found.append((rule, result))

        detections = []
        for rule, result in found:
            detections.append(await self._record_anomaly(event, rule, result, features, now))
        return detections

    async def _record_anomaly(
        self,
        event: LogEvent,
        rule: AnomalyDetectionRule,
        result: AnomalyResult,
        features: FeatureVector,
        now: datetime,
    ) -> AnomalyDetection:
        detection = AnomalyDetection(
            timestamp=now,
            source_event_id=event.id,
            rule_id=rule.id,
            anomaly_type=rule.rule_type,
            severity=AnomalySeverity.from_confidence(result.confidence),
            confidence_score=result.confidence,
            description=result.description,
            context={"features": features.model_dump()},
        )
        self.stats["anomalies_detected"] += 1
        self._recent.append(detection)
        self._rules[rule.id] = rule.model_copy(update={"usage_count": rule.usage_count + 1})

        try:
            await self.store.save_anomaly_detection(detection)
            await self.store.increment_anomaly_rule_usage(rule.id)
        except PersistenceError as e:
            logger.error(
                "anomaly_save_failed",
                detection_id=detection.id,
                rule_id=rule.id,
                error=str(e),
            )

        logger.info(
            "anomaly_detected",
            detection_id=detection.id,
            rule_id=rule.id,
            anomaly_type=rule.rule_type.value,
            severity=detection.severity.value,
            confidence=round(result.confidence, 3),
            event_id=event.id,
            description=result.description,
        )

        if result.confidence >= self.alert_confidence and self.alert_callback is not None:
            try:
                await self.alert_callback(
                    event.as_anomaly(
                        confidence=result.confidence,
                        description=result.description,
                        anomaly_type=rule.rule_type.value,
                    ),
                    now,
                )
                self.stats["alerts_raised"] += 1
            except Exception as e:
                logger.error(
                    "anomaly_alert_failed",
                    detection_id=detection.id,
                    rule_id=rule.id,
                    error=str(e),
                )

        return detection

    def recent_anomalies(self, limit: Optional[int] = None) -> List[AnomalyDetection]:
        """
        Recent anomalies from the in-memory buffer, newest first.

        Args:
            limit: Maximum number returned (default: the whole buffer).
        """
        recent = list(reversed(self._recent))
        return recent if limit is None else recent[:limit]

    # =========================================================================
    # OPERATOR FEEDBACK
    # =========================================================================

    async def resolve_anomaly(
        self,
        detection_id: str,
        resolved_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[AnomalyDetection]:
        """
        Mark an anomaly resolved.

        Returns:
            Optional[AnomalyDetection]: Updated anomaly, or None if unknown.

        Raises:
            PersistenceError: If the store cannot be read or written.
        """
        detection = await self.store.get_anomaly_detection(detection_id)
        if detection is None:
            logger.warning("anomaly_not_found", detection_id=detection_id)
            return None

        resolved = detection.resolve(resolved_by, timestamp or utc_now())
        await self.store.update_anomaly_detection(resolved)
        self._replace_recent(resolved)
        logger.info("anomaly_resolved", detection_id=detection_id, resolved_by=resolved_by)
        return resolved

    async def mark_false_positive(
        self,
        detection_id: str,
        resolved_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[AnomalyDetection]:
        """
        Flag an anomaly as a false positive.

        False positives are excluded from training data.

        Returns:
            Optional[AnomalyDetection]: Updated anomaly, or None if unknown.

        Raises:
            PersistenceError: If the store cannot be read or written.
        """
        detection = await self.store.get_anomaly_detection(detection_id)
        if detection is None:
            logger.warning("anomaly_not_found", detection_id=detection_id)
            return None

        flagged = detection.mark_false_positive(resolved_by, timestamp or utc_now())
        await self.store.update_anomaly_detection(flagged)
        self._replace_recent(flagged)
        logger.info(
            "anomaly_false_positive",
            detection_id=detection_id,
            anomaly_type=flagged.anomaly_type.value,
            resolved_by=resolved_by,
        )
        return flagged

    def _replace_recent(self, detection: AnomalyDetection) -> None:
        for index, current in enumerate(self._recent):
            if current.id == detection.id:
                self._recent[index] = detection
                return

    async def get_statistics(self, now: Optional[datetime] = None) -> AnomalyStatistics:
        """
        Aggregate anomaly counts.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        return await self.store.anomaly_statistics(now or utc_now())
