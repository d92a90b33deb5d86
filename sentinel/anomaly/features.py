"""
Feature extraction for anomaly scoring and model training.

This module provides the FeatureExtractor class which turns a LogEvent into
a fixed-shape FeatureVector. Extraction is pure and deterministic: the same
event always yields the same vector.

Example:
    >>> extractor = FeatureExtractor()
    >>> features = extractor.extract(LogEvent(severity="error", message="login denied"))
    >>> features.security_score
    0.25
"""

import re
from typing import Dict, Tuple

from sentinel.models.anomaly import FeatureVector
from sentinel.models.events import LogEvent

# Ordinal severity levels; unknown severities count as "info"
SEVERITY_LEVELS: Dict[str, int] = {
    "debug": 0,
    "info": 1,
    "warn": 2,
    "warning": 2,
    "error": 3,
    "critical": 4,
    "fatal": 5,
}
DEFAULT_SEVERITY_LEVEL = 1

SECURITY_KEYWORDS: Tuple[str, ...] = (
    "error",
    "failed",
    "denied",
    "unauthorized",
    "blocked",
    "attack",
    "malware",
    "virus",
)

SOURCE_HASH_BUCKETS = 10000

_DIGIT = re.compile(r"\d")
_SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_IPV4 = re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b")
_URL = re.compile(r"https?://\S+")
_EMAIL = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")


def severity_level(severity: str) -> int:
    """Ordinal level of a severity string."""
    return SEVERITY_LEVELS.get(severity.lower(), DEFAULT_SEVERITY_LEVEL)


def source_hash(source: str) -> int:
    """
    Bounded, stable hash of a source name.

    Uses the 31-multiplier string hash with 32-bit signed overflow, so the
    value is identical across processes and runs (unlike ``hash()``).

    Args:
        source: Source name.

    Returns:
        int: Value in [0, 9999].
    """
    h = 0
    for char in source:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % SOURCE_HASH_BUCKETS


def security_score(message: str) -> float:
    """Fraction of security keywords present in a message (case-insensitive)."""
    lowered = message.lower()
    hits = sum(1 for keyword in SECURITY_KEYWORDS if keyword in lowered)
    return hits / len(SECURITY_KEYWORDS)


class FeatureExtractor:
    """
    Builds FeatureVectors from events.

    Example:
        >>> extractor = FeatureExtractor()
        >>> vector = extractor.extract(event)
        >>> vector.numeric_features()["severity_level"]
        3.0
    """

    def extract(self, event: LogEvent) -> FeatureVector:
        """
        Extract the feature vector of an event.

        Time features use the event timestamp in UTC.

        Args:
            event: Event to summarize.

        Returns:
            FeatureVector: Feature summary.
        """
        message = event.message
        length = len(message)
        upper = sum(1 for char in message if char.isupper())

        return FeatureVector(
            hour=event.timestamp.hour,
            day_of_week=event.timestamp.weekday(),
            severity_level=severity_level(event.severity),
            source_hash=source_hash(event.source or "unknown"),
            message_length=length,
            has_numbers=bool(_DIGIT.search(message)),
            has_special_chars=bool(_SPECIAL_CHARS.search(message)),
            contains_ip=bool(_IPV4.search(message)),
            contains_url=bool(_URL.search(message)),
            contains_email=bool(_EMAIL.search(message)),
            word_count=len(message.split()),
            upper_case_ratio=upper / length if length else 0.0,
            security_score=security_score(message),
        )
