"""
Anomaly detection.

This module scores events for anomalies, maintains the learned baselines
and trains the statistical classifier.

Components:
    features: FeatureExtractor, event to FeatureVector
    detectors: One detector per AnomalyRuleType
    scorer: AnomalyScorer, runs the detectors and records anomalies
    baselines: BaselineManager, periodic baseline refresh
    trainer: ModelTrainer, daily statistical model training

Example:
    >>> from sentinel.anomaly import AnomalyScorer, ModelTrainer
    >>>
    >>> scorer = AnomalyScorer(store, alert_callback=manager.process_event)
    >>> await scorer.load_rules()
    >>> detections = await scorer.analyze(event)
"""

from sentinel.anomaly.baselines import BaselineManager
from sentinel.anomaly.detectors import (
    AnomalyDetector,
    ContentAnomalyDetector,
    FrequencySpikeDetector,
    SecurityClusterDetector,
    SourceAnomalyDetector,
    TemporalAnomalyDetector,
    calculate_message_similarity,
    default_detectors,
)
from sentinel.anomaly.features import FeatureExtractor, severity_level, source_hash
from sentinel.anomaly.scorer import AnomalyAlertCallback, AnomalyScorer
from sentinel.anomaly.trainer import ModelTrainer, build_model, validate_model

__all__ = [
    # Features
    "FeatureExtractor",
    "severity_level",
    "source_hash",
    # Detectors
    "AnomalyDetector",
    "ContentAnomalyDetector",
    "FrequencySpikeDetector",
    "SecurityClusterDetector",
    "SourceAnomalyDetector",
    "TemporalAnomalyDetector",
    "calculate_message_similarity",
    "default_detectors",
    # Scoring
    "AnomalyAlertCallback",
    "AnomalyScorer",
    "BaselineManager",
    # Training
    "ModelTrainer",
    "build_model",
    "validate_model",
]
