"""Tests for the anomaly detectors and baselines."""

from datetime import timedelta

import pytest
from conftest import T0, make_event

from sentinel.anomaly.baselines import BaselineManager
from sentinel.anomaly.detectors import (
    ContentAnomalyDetector,
    FrequencySpikeDetector,
    SecurityClusterDetector,
    SourceAnomalyDetector,
    TemporalAnomalyDetector,
    calculate_message_similarity,
)
from sentinel.anomaly.features import FeatureExtractor
from sentinel.detection.defaults import default_anomaly_rules
from sentinel.models.anomaly import AnomalyRuleType, PatternType

extractor = FeatureExtractor()


def _rule(rule_type: AnomalyRuleType):
    return next(r for r in default_anomaly_rules() if r.rule_type == rule_type)


async def _record(store, events):
    for event in events:
        await store.record_event(event)


async def _detect(detector, rule_type, event, now=T0):
    return await detector.detect(_rule(rule_type), event, extractor.extract(event), now)


class TestMessageSimilarity:
    def test_self_similarity_is_one(self):
        for message in ("disk full", "  padded  message ", "", "UPPER lower"):
            assert calculate_message_similarity(message, message) == 1.0

    def test_partial_overlap(self):
        assert calculate_message_similarity("disk full on /var", "disk full on /tmp") == 0.6

    def test_case_insensitive_and_disjoint(self):
        assert calculate_message_similarity("Disk FULL", "disk full") == 1.0
        assert calculate_message_similarity("alpha beta", "gamma delta") == 0.0


class TestFrequencySpike:
    async def test_spike_without_history(self, store):
        await _record(
            store,
            [make_event(severity="error", at=T0 - timedelta(seconds=10 * i)) for i in range(6)],
        )
        detector = FrequencySpikeDetector(store)

        result = await _detect(detector, AnomalyRuleType.FREQUENCY_SPIKE, make_event(severity="error"))

        assert result.is_anomaly
        assert result.confidence == pytest.approx(0.8)

    async def test_below_minimum_count(self, store):
        await _record(store, [make_event(severity="error") for _ in range(4)])
        detector = FrequencySpikeDetector(store)

        result = await _detect(detector, AnomalyRuleType.FREQUENCY_SPIKE, make_event(severity="error"))

        assert not result.is_anomaly

    async def test_other_severity_ignored(self, store):
        await _record(store, [make_event(severity="error") for _ in range(10)])
        detector = FrequencySpikeDetector(store)

        result = await _detect(detector, AnomalyRuleType.FREQUENCY_SPIKE, make_event(severity="info"))

        assert not result.is_anomaly

    async def test_high_historical_average_suppresses(self, store):
        two_days_ago = T0 - timedelta(days=2)
        await _record(
            store,
            [
                make_event(severity="error", at=two_days_ago + timedelta(minutes=i))
                for i in range(10)
            ],
        )
        await _record(store, [make_event(severity="error") for _ in range(6)])
        detector = FrequencySpikeDetector(store)

        result = await _detect(detector, AnomalyRuleType.FREQUENCY_SPIKE, make_event(severity="error"))

        assert not result.is_anomaly


class TestSourceAnomaly:
    async def test_new_source_fires_once(self, store):
        detector = SourceAnomalyDetector(store, BaselineManager(store))
        event = make_event(source="new-service")

        first = await _detect(detector, AnomalyRuleType.SOURCE_ANOMALY, event)
        second = await _detect(detector, AnomalyRuleType.SOURCE_ANOMALY, event)

        assert first.is_anomaly
        assert first.confidence == pytest.approx(0.9)
        assert not second.is_anomaly
        learned = await store.get_baseline_pattern(PatternType.SOURCE, "new-service")
        assert learned.frequency_normal == 1.0

    async def test_known_source_far_above_baseline(self, store):
        baselines = BaselineManager(store)
        await baselines.learn_source("chatty", T0 - timedelta(days=1))
        await _record(
            store,
            [make_event(source="chatty", at=T0 - timedelta(minutes=i)) for i in range(5)],
        )
        detector = SourceAnomalyDetector(store, baselines)

        result = await _detect(detector, AnomalyRuleType.SOURCE_ANOMALY, make_event(source="chatty"))

        assert result.is_anomaly
        assert result.confidence == pytest.approx(0.9)

    async def test_last_hour_compared_with_hourly_rate(self, store):
        """48 events a day is two an hour, so ten in the last hour is a burst."""
        earlier = [T0 - timedelta(hours=2 + i % 20, minutes=i) for i in range(38)]
        last_hour = [T0 - timedelta(minutes=m) for m in range(1, 11)]
        await _record(store, [make_event(source="api", at=at) for at in earlier + last_hour])
        baselines = BaselineManager(store)
        await baselines.update_baselines(T0)
        detector = SourceAnomalyDetector(store, baselines)

        baseline = await baselines.get_source_baseline("api")
        result = await _detect(detector, AnomalyRuleType.SOURCE_ANOMALY, make_event(source="api"))

        assert baseline.frequency_normal == 2.0
        assert result.is_anomaly
        assert "10 vs expected 2" in result.description

    async def test_rule_of_another_type_is_rejected(self, store):
        detector = FrequencySpikeDetector(store)

        with pytest.raises(ValueError, match="expected FrequencySpikeParams"):
            await _detect(detector, AnomalyRuleType.SOURCE_ANOMALY, make_event(severity="error"))


class TestContentAnomaly:
    async def test_no_recent_messages_is_normal(self, store):
        detector = ContentAnomalyDetector(store)

        result = await _detect(
            detector, AnomalyRuleType.CONTENT_ANOMALY, make_event("kernel panic in module xyz")
        )

        assert not result.is_anomaly

    async def test_unlike_recent_traffic(self, store):
        await _record(
            store,
            [make_event("heartbeat ok from worker", at=T0 - timedelta(minutes=i)) for i in range(3)],
        )
        detector = ContentAnomalyDetector(store)

        result = await _detect(
            detector, AnomalyRuleType.CONTENT_ANOMALY, make_event("kernel panic in module xyz")
        )

        assert result.is_anomaly
        assert result.confidence == pytest.approx(0.75)

    async def test_event_is_not_compared_with_itself(self, store):
        event = make_event("kernel panic in module xyz")
        await _record(store, [event])
        detector = ContentAnomalyDetector(store)

        result = await _detect(detector, AnomalyRuleType.CONTENT_ANOMALY, event)

        assert not result.is_anomaly

    async def test_similar_and_short_messages_are_normal(self, store):
        await _record(store, [make_event("heartbeat ok from worker 7", at=T0 - timedelta(minutes=1))])
        detector = ContentAnomalyDetector(store)

        similar = await _detect(
            detector, AnomalyRuleType.CONTENT_ANOMALY, make_event("heartbeat ok from worker 9")
        )
        short = await _detect(detector, AnomalyRuleType.CONTENT_ANOMALY, make_event("oops"))

        assert not similar.is_anomaly
        assert not short.is_anomaly


class TestTemporalAnomaly:
    async def test_volume_far_above_hourly_average(self, store, history_events):
        await _record(store, history_events)
        await _record(store, [make_event(at=T0 + timedelta(minutes=i)) for i in range(10)])
        detector = TemporalAnomalyDetector(store)

        result = await _detect(
            detector, AnomalyRuleType.TEMPORAL_ANOMALY, make_event(), T0 + timedelta(minutes=10)
        )

        assert result.is_anomaly
        assert result.confidence == pytest.approx(0.9)

    async def test_usual_volume_is_normal(self, store, history_events):
        await _record(store, history_events)
        await _record(store, [make_event(at=T0 + timedelta(minutes=i)) for i in (10, 40)])
        detector = TemporalAnomalyDetector(store)

        result = await _detect(
            detector, AnomalyRuleType.TEMPORAL_ANOMALY, make_event(), T0 + timedelta(minutes=45)
        )

        assert not result.is_anomaly

    async def test_no_history_is_normal(self, store):
        await _record(store, [make_event() for _ in range(50)])
        detector = TemporalAnomalyDetector(store)

        result = await _detect(detector, AnomalyRuleType.TEMPORAL_ANOMALY, make_event())

        assert not result.is_anomaly


class TestSecurityCluster:
    async def test_cluster_fires(self, store):
        await _record(
            store,
            [make_event("login failed for root", at=T0 - timedelta(seconds=i)) for i in range(5)],
        )
        detector = SecurityClusterDetector(store)

        result = await _detect(
            detector, AnomalyRuleType.SECURITY_CLUSTER, make_event("login FAILED for admin")
        )

        assert result.is_anomaly
        assert result.confidence == pytest.approx(0.95)

    async def test_below_threshold(self, store):
        await _record(store, [make_event("access denied") for _ in range(4)])
        detector = SecurityClusterDetector(store)

        result = await _detect(detector, AnomalyRuleType.SECURITY_CLUSTER, make_event("access denied"))

        assert not result.is_anomaly

    async def test_event_without_keyword(self, store):
        await _record(store, [make_event("access denied") for _ in range(10)])
        detector = SecurityClusterDetector(store)

        result = await _detect(detector, AnomalyRuleType.SECURITY_CLUSTER, make_event("all good"))

        assert not result.is_anomaly


class TestBaselineManager:
    async def test_update_baselines(self, store, history_events):
        await _record(store, history_events)

        patterns = await BaselineManager(store).update_baselines(T0)

        hourly = [p for p in patterns if p.pattern_type == PatternType.HOURLY]
        assert len(hourly) == 24
        assert all(p.frequency_normal == 6.0 for p in hourly)
        worker = await store.get_baseline_pattern(PatternType.SOURCE, "worker")
        assert worker.occurrence_count == 24
        assert worker.frequency_normal == 1.0
        assert worker.is_baseline
