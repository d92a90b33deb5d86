"""Tests for statistical model training."""

from datetime import timedelta

import pytest
from conftest import T0, make_event

from sentinel.anomaly.features import FeatureExtractor
from sentinel.anomaly.trainer import ModelTrainer, build_model, validate_model
from sentinel.config.models import TrainingConfig
from sentinel.errors import ModelError
from sentinel.models.anomaly import (
    AnomalyDetection,
    AnomalyRuleType,
    AnomalySeverity,
    TrainingExample,
)

ANOMALOUS = "LOGIN FAILED ACCESS DENIED FOR ROOT"
NORMAL = "heartbeat ok"


def _examples(anomalies: int, normals: int):
    return [TrainingExample(features={"a": 10.0, "b": 9.0}, is_anomaly=True)] * anomalies + [
        TrainingExample(features={"a": 0.0, "b": 1.0}, is_anomaly=False)
    ] * normals


async def _seed_training_data(store, anomalies=10, normals=20, false_positives=0):
    extractor = FeatureExtractor()
    bad = make_event(ANOMALOUS, severity="error", source="gateway", at=T0 - timedelta(hours=1))
    features = extractor.extract(bad).model_dump()
    for index in range(anomalies + false_positives):
        await store.save_anomaly_detection(
            AnomalyDetection(
                timestamp=T0 - timedelta(hours=1),
                source_event_id=f"evt-{index}",
                anomaly_type=AnomalyRuleType.SECURITY_CLUSTER,
                severity=AnomalySeverity.HIGH,
                confidence_score=0.85,
                context={"features": features},
                false_positive=index >= anomalies,
            )
        )
    for _ in range(normals):
        await store.record_event(make_event(NORMAL, source="worker", at=T0 - timedelta(hours=1)))


def _trainer(store, **overrides) -> ModelTrainer:
    settings = {"min_training_samples": 10, **overrides}
    return ModelTrainer(store, config=TrainingConfig(**settings))


class TestBuildModel:
    def test_perfectly_separable_data(self):
        model = build_model("m", _examples(5, 5), min_samples=10, now=T0)

        assert model.accuracy_score == 1.0
        assert model.thresholds == {"a": 5.0, "b": 5.0}
        assert model.feature_stats["a"].anomaly.std == 0.0
        assert model.anomaly_samples == 5 and model.normal_samples == 5
        assert model.training_date == T0

    def test_too_few_examples(self):
        with pytest.raises(ModelError, match="Insufficient"):
            build_model("m", _examples(2, 2), min_samples=10)

    def test_single_class(self):
        with pytest.raises(ModelError, match="both classes"):
            build_model("m", _examples(10, 0), min_samples=10)

    def test_indistinguishable_classes(self):
        """Ties vote normal, so identical features give 50% accuracy."""
        examples = [
            TrainingExample(features={"a": 1.0}, is_anomaly=label)
            for label in (True, False) * 5
        ]

        model = build_model("m", examples, min_samples=10)

        assert model.accuracy_score == 0.5

    def test_validate_model_on_empty_set(self):
        model = build_model("m", _examples(5, 5), min_samples=10)

        assert validate_model(model, []) == 0.0


class TestModelTrainer:
    async def test_collect_training_data(self, store):
        await _seed_training_data(store, anomalies=3, normals=4, false_positives=2)
        await store.save_anomaly_detection(
            AnomalyDetection(
                timestamp=T0 - timedelta(hours=1),
                source_event_id="no-context",
                anomaly_type=AnomalyRuleType.CONTENT_ANOMALY,
                severity=AnomalySeverity.MEDIUM,
                confidence_score=0.7,
            )
        )

        examples = await _trainer(store).collect_training_data(T0)

        positives = [e for e in examples if e.is_anomaly]
        negatives = [e for e in examples if not e.is_anomaly]
        assert len(positives) == 3
        assert len(negatives) == 4
        assert all(e.weight == 1.0 for e in positives)
        assert all(e.weight == 0.5 for e in negatives)
        assert "contains_ip" not in positives[0].features

    async def test_train_stores_versioned_models(self, store):
        await _seed_training_data(store)
        trainer = _trainer(store)

        first = await trainer.train(T0)
        second = await trainer.train(T0 + timedelta(hours=1))

        assert first.accuracy_score == 1.0
        assert (first.version, second.version) == (1, 2)
        history = store.model_history("statistical_v1")
        assert [m.is_active for m in history] == [False, True]
        assert (await store.load_active_model("statistical_v1")).version == 2
        assert trainer.active_model == second
        assert not trainer.is_training
        assert trainer.status()["active_version"] == 2

    async def test_trained_model_classifies(self, store):
        await _seed_training_data(store)
        trainer = _trainer(store)
        await trainer.train(T0)
        extractor = FeatureExtractor()

        suspicious = trainer.predict(
            extractor.extract(make_event(ANOMALOUS, severity="error", source="gateway"))
        )
        calm = trainer.predict(extractor.extract(make_event(NORMAL, source="worker")))

        assert suspicious.is_anomaly
        assert not calm.is_anomaly

    async def test_insufficient_data(self, store):
        await _seed_training_data(store, anomalies=2, normals=2)

        with pytest.raises(ModelError):
            await _trainer(store).train(T0)

    async def test_low_accuracy_model_is_discarded(self, store):
        await _seed_training_data(store)
        trainer = _trainer(store, accuracy_threshold=1.0)

        assert await trainer.train(T0) is None
        assert store.model_history("statistical_v1") == []

    async def test_overlapping_run_is_skipped(self, store):
        trainer = _trainer(store)
        trainer.is_training = True

        assert await trainer.train(T0) is None

    async def test_predict_without_model(self, store):
        trainer = _trainer(store)
        await trainer.load_active_model()

        assert trainer.predict(FeatureExtractor().extract(make_event())) is None
