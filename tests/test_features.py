"""Tests for feature extraction."""

from datetime import datetime, timezone

from conftest import make_event

from sentinel.anomaly.features import (
    SECURITY_KEYWORDS,
    FeatureExtractor,
    security_score,
    severity_level,
    source_hash,
)
from sentinel.models.anomaly import BOOLEAN_FEATURES


def test_severity_levels():
    assert severity_level("debug") == 0
    assert severity_level("WARNING") == 2
    assert severity_level("warn") == 2
    assert severity_level("fatal") == 5
    assert severity_level("verbose") == 1


def test_source_hash_is_stable_and_bounded():
    assert source_hash("auth-service") == source_hash("auth-service")
    assert source_hash("a") == 97
    assert source_hash("") == 0
    for name in ("x" * 200, "gateway", "ünïcode-source"):
        assert 0 <= source_hash(name) < 10000


def test_security_score():
    assert security_score("all good") == 0.0
    assert security_score("Login FAILED: access denied") == 2 / len(SECURITY_KEYWORDS)


def test_extract_message_features():
    event = make_event(
        "GET https://api.example.com failed for admin@example.com from 10.0.0.12",
        severity="error",
        source="gateway",
        at=datetime(2024, 3, 6, 14, 30, tzinfo=timezone.utc),
    )

    vector = FeatureExtractor().extract(event)

    assert vector.hour == 14
    assert vector.day_of_week == 2
    assert vector.severity_level == 3
    assert vector.source_hash == source_hash("gateway")
    assert vector.has_numbers
    assert vector.has_special_chars
    assert vector.contains_ip
    assert vector.contains_url
    assert vector.contains_email
    assert vector.word_count == 7
    assert vector.message_length == len(event.message)


def test_extract_empty_message():
    vector = FeatureExtractor().extract(make_event("", source=None))

    assert vector.message_length == 0
    assert vector.word_count == 0
    assert vector.upper_case_ratio == 0.0
    assert vector.source_hash == source_hash("unknown")
    assert not vector.has_numbers


def test_upper_case_ratio():
    vector = FeatureExtractor().extract(make_event("ABcd"))

    assert vector.upper_case_ratio == 0.5


def test_numeric_features_exclude_booleans():
    numeric = FeatureExtractor().extract(make_event("disk full")).numeric_features()

    assert not set(numeric) & set(BOOLEAN_FEATURES)
    assert numeric["word_count"] == 2.0
    assert all(isinstance(v, float) for v in numeric.values())
