"""
Statistical model training for anomaly classification.

This module provides the ModelTrainer class which periodically fits a
per-feature mean/std midpoint classifier from confirmed anomalies and a
random sample of anomaly-free events.

Model:
    For every numeric feature present in both classes, the trainer records
    the per-class mean, population standard deviation, min and max, and the
    midpoint between the two class means. A feature set is classified as
    anomalous when more than half of its features lie strictly nearer the
    anomaly-class mean than the normal-class mean.

Training runs in a worker thread so the event loop keeps processing events.

Example:
    >>> trainer = ModelTrainer(store, config=TrainingConfig())
    >>> model = await trainer.train()
    >>> model.accuracy_score
    0.93
"""

import asyncio
import statistics
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import ValidationError

from sentinel.anomaly.features import FeatureExtractor
from sentinel.config.models import TrainingConfig
from sentinel.errors import ModelError
from sentinel.models.anomaly import (
    ClassStats,
    FeatureStats,
    FeatureVector,
    ModelPrediction,
    StatisticalModel,
    TrainingExample,
)
from sentinel.models.events import utc_now
from sentinel.storage.base import AlertStore

logger = structlog.get_logger(__name__)


def _class_stats(values: Sequence[float]) -> ClassStats:
    return ClassStats(
        mean=statistics.fmean(values),
        std=statistics.pstdev(values),
        min=min(values),
        max=max(values),
    )


def split_by_label(
    examples: Sequence[TrainingExample],
) -> Tuple[List[TrainingExample], List[TrainingExample]]:
    """Split examples into (anomalies, normals)."""
    return (
        [e for e in examples if e.is_anomaly],
        [e for e in examples if not e.is_anomaly],
    )


def build_model(
    name: str,
    examples: Sequence[TrainingExample],
    min_samples: int,
    now: Optional[datetime] = None,
) -> StatisticalModel:
    """
    Fit the midpoint classifier and score it on its own training set.

    Args:
        name: Model name.
        examples: Labelled examples.
        min_samples: Minimum number of examples required.
        now: Training date, defaults to now.

    Returns:
        StatisticalModel: Fitted model with its accuracy (not yet stored).

    Raises:
        ModelError: If there are too few examples or a class is empty.
    """
    if len(examples) < min_samples:
        raise ModelError(
            "Insufficient training data",
            samples=len(examples),
            min_samples=min_samples,
        )

    anomalies, normals = split_by_label(examples)
    if not anomalies or not normals:
        raise ModelError(
            "Insufficient training data for both classes",
            anomaly_samples=len(anomalies),
            normal_samples=len(normals),
        )

    feature_stats: Dict[str, FeatureStats] = {}
    thresholds: Dict[str, float] = {}
    for feature in anomalies[0].features:
        anomaly_values = [e.features[feature] for e in anomalies if feature in e.features]
        normal_values = [e.features[feature] for e in normals if feature in e.features]
        if not anomaly_values or not normal_values:
            continue
        stats = FeatureStats(
            anomaly=_class_stats(anomaly_values),
            normal=_class_stats(normal_values),
        )
        feature_stats[feature] = stats
        thresholds[feature] = (stats.anomaly.mean + stats.normal.mean) / 2

    model = StatisticalModel(
        name=name,
        feature_stats=feature_stats,
        thresholds=thresholds,
        training_date=now or utc_now(),
        anomaly_samples=len(anomalies),
        normal_samples=len(normals),
    )
    return model.model_copy(update={"accuracy_score": validate_model(model, examples)})


def validate_model(model: StatisticalModel, examples: Sequence[TrainingExample]) -> float:
    """
    Fraction of examples the model labels correctly.

    Returns:
        float: Accuracy in [0, 1]; 0 for no examples.
    """
    if not examples:
        return 0.0
    correct = sum(
        1 for e in examples if model.predict(e.features).is_anomaly == e.is_anomaly
    )
    return correct / len(examples)


class ModelTrainer:
    """
    Collects training data, fits and stores the statistical model.

    Only one training run is active at a time; a run requested while
    another is in progress is skipped.

    Attributes:
        store: Persistence collaborator.
        extractor: Feature extractor for normal examples.
        config: Training settings.
        is_training: True while a run is in progress.
        last_training_time: When the last run finished.
        active_model: Most recently stored model.
    """

    def __init__(
        self,
        store: AlertStore,
        extractor: Optional[FeatureExtractor] = None,
        config: Optional[TrainingConfig] = None,
    ) -> None:
        self.store = store
        self.extractor = extractor or FeatureExtractor()
        self.config = config or TrainingConfig()
        self.is_training = False
        self.last_training_time: Optional[datetime] = None
        self.active_model: Optional[StatisticalModel] = None

    async def load_active_model(self) -> Optional[StatisticalModel]:
        """
        Load the active model for the configured name.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        self.active_model = await self.store.load_active_model(self.config.model_name)
        return self.active_model

    async def collect_training_data(self, now: Optional[datetime] = None) -> List[TrainingExample]:
        """
        Gather weighted examples from recorded anomalies and events.

        Positive examples come from anomalies not flagged as false positives;
        their feature vector is the one recorded at detection time. Negative
        examples are a random sample of events with no anomaly.

        Args:
            now: Reference time, defaults to now.

        Returns:
            List[TrainingExample]: Anomalies first, then normal events.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        now = now or utc_now()
        cfg = self.config

        detections = await self.store.anomaly_training_detections(
            since=now - timedelta(days=cfg.anomaly_lookback_days),
            limit=cfg.anomaly_sample_limit,
        )
        normal_events = await self.store.normal_training_events(
            since=now - timedelta(days=cfg.normal_lookback_days),
            limit=cfg.normal_sample_limit,
        )

        examples: List[TrainingExample] = []
        skipped = 0
        for detection in detections:
            try:
                vector = FeatureVector.model_validate(detection.context.get("features", {}))
            except ValidationError:
                skipped += 1
                continue
            examples.append(
                TrainingExample(
                    features=vector.numeric_features(),
                    is_anomaly=True,
                    weight=cfg.anomaly_weight,
                )
            )

        for event in normal_events:
            examples.append(
                TrainingExample(
                    features=self.extractor.extract(event).numeric_features(),
                    is_anomaly=False,
                    weight=cfg.normal_weight,
                )
            )

        if skipped:
            logger.warning("training_anomalies_skipped", skipped=skipped)

        logger.info(
            "training_data_collected",
            anomaly_samples=len(examples) - len(normal_events),
            normal_samples=len(normal_events),
        )
        return examples

    async def train(self, now: Optional[datetime] = None) -> Optional[StatisticalModel]:
        """
        Run one training cycle.

        Returns:
            Optional[StatisticalModel]: The stored model, or None if the run
            was skipped or the model did not reach the accuracy threshold.

        Raises:
            ModelError: If there is not enough training data.
            PersistenceError: If the store cannot be read or written.
        """
        if self.is_training:
            logger.warning("model_training_in_progress")
            return None

        self.is_training = True
        now = now or utc_now()
        try:
            logger.info("model_training_started", model_name=self.config.model_name)

            examples = await self.collect_training_data(now)
            model = await asyncio.to_thread(
                build_model,
                self.config.model_name,
                examples,
                self.config.min_training_samples,
                now,
            )

            if model.accuracy_score <= self.config.accuracy_threshold:
                logger.warning(
                    "model_accuracy_too_low",
                    model_name=model.name,
                    accuracy=round(model.accuracy_score, 3),
                    threshold=self.config.accuracy_threshold,
                )
                return None

            stored = await self.store.store_model(model)
            self.active_model = stored
            logger.info(
                "model_training_complete",
                model_name=stored.name,
                version=stored.version,
                accuracy=round(stored.accuracy_score, 3),
                features=len(stored.feature_stats),
                anomaly_samples=stored.anomaly_samples,
                normal_samples=stored.normal_samples,
            )
            return stored

        finally:
            self.is_training = False
            self.last_training_time = utc_now()

    def predict(self, features: FeatureVector) -> Optional[ModelPrediction]:
        """
        Classify a feature vector with the active model.

        Returns:
            Optional[ModelPrediction]: Prediction, or None without an active model.
        """
        if self.active_model is None:
            return None
        return self.active_model.predict(features.numeric_features())

    def status(self) -> Dict[str, object]:
        """Training state summary."""
        return {
            "is_training": self.is_training,
            "last_training_time": (
                self.last_training_time.isoformat() if self.last_training_time else None
            ),
            "active_model": self.active_model.name if self.active_model else None,
            "active_version": self.active_model.version if self.active_model else None,
        }
