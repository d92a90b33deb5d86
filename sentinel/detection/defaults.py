"""
Built-in rule sets.

Used when the store cannot provide rules at startup (empty or unreachable)
and no seed rules are configured.

Functions:
    default_alert_rules: Fallback alert rules
    default_anomaly_rules: Fallback anomaly detectors
"""

from typing import List

from sentinel.models.alerts import AlertSeverity
from sentinel.models.anomaly import (
    AnomalyDetectionRule,
    AnomalyRuleType,
    ContentAnomalyParams,
    FrequencySpikeParams,
    SecurityClusterParams,
    SourceAnomalyParams,
    TemporalAnomalyParams,
)
from sentinel.models.rules import (
    AlertRule,
    EscalationLevel,
    PatternCondition,
    RateCondition,
    RuleType,
)


def default_alert_rules() -> List[AlertRule]:
    """
    Build the fallback alert rule set.

    Returns:
        List[AlertRule]: Rules with ids default_1 .. default_4.
    """
    return [
        AlertRule(
            id="default_1",
            name="Error Rate Spike",
            description="High number of errors in a short window",
            type=RuleType.RATE,
            condition=RateCondition(severity=["error"], count=10, time_window_seconds=300),
            channels=["default_email", "slack"],
            severity=AlertSeverity.HIGH,
            cooldown_seconds=900,
            escalation_levels=[
                EscalationLevel(delay_seconds=900, channels=["email", "sms"]),
                EscalationLevel(delay_seconds=1800, channels=["email", "sms", "pushover"]),
            ],
        ),
        AlertRule(
            id="default_2",
            name="Security Event Detection",
            description="Authentication or security failures",
            type=RuleType.PATTERN,
            condition=PatternCondition(
                categories=["security", "authentication"],
                severity=["error", "critical"],
                pattern="(failed|unauthorized|denied|breach|attack|intrusion|suspicious)",
            ),
            channels=["default_email", "slack"],
            severity=AlertSeverity.CRITICAL,
            cooldown_seconds=300,
            escalation_levels=[
                EscalationLevel(delay_seconds=300, channels=["sms", "pushover"]),
                EscalationLevel(
                    delay_seconds=600, channels=["email", "sms", "pushover", "slack"]
                ),
            ],
        ),
        AlertRule(
            id="default_3",
            name="Critical System Alert",
            description="Critical events reporting outages or crashes",
            type=RuleType.PATTERN,
            condition=PatternCondition(
                severity=["critical"],
                pattern="(down|offline|failure|crash|panic|emergency|outage)",
            ),
            channels=["default_email", "sms", "pushover"],
            severity=AlertSeverity.CRITICAL,
            cooldown_seconds=0,
            escalation_levels=[
                EscalationLevel(delay_seconds=0, channels=["sms", "pushover", "email"]),
            ],
        ),
        AlertRule(
            id="default_4",
            name="Device Connectivity Alert",
            description="Devices going offline or unreachable",
            type=RuleType.PATTERN,
            condition=PatternCondition(
                event_type="device_status",
                pattern="(offline|disconnected|unreachable|timeout)",
            ),
            channels=["default_email"],
            severity=AlertSeverity.MEDIUM,
            cooldown_seconds=1800,
        ),
    ]


def default_anomaly_rules() -> List[AnomalyDetectionRule]:
    """
    Build the fallback anomaly detector set, one per detector type.

    Returns:
        List[AnomalyDetectionRule]: Detector rules.
    """
    return [
        AnomalyDetectionRule(
            id="anomaly_frequency_spike",
            name="Error Frequency Spike",
            description="Unusual increase in error frequency",
            rule_type=AnomalyRuleType.FREQUENCY_SPIKE,
            parameters=FrequencySpikeParams(
                log_level="error", time_window=300, spike_threshold=3.0, minimum_count=5
            ),
            confidence_threshold=0.8,
        ),
        AnomalyDetectionRule(
            id="anomaly_source",
            name="New Source Detection",
            description="Log source never seen before or unusually active",
            rule_type=AnomalyRuleType.SOURCE_ANOMALY,
            parameters=SourceAnomalyParams(
                min_confidence=0.7, learning_period_days=7, new_source_threshold=0.9
            ),
            confidence_threshold=0.7,
        ),
        AnomalyDetectionRule(
            id="anomaly_content",
            name="Unusual Message Content",
            description="Message unlike recent traffic",
            rule_type=AnomalyRuleType.CONTENT_ANOMALY,
            parameters=ContentAnomalyParams(
                similarity_threshold=0.3, min_message_length=10, pattern_window=1000
            ),
            confidence_threshold=0.75,
        ),
        AnomalyDetectionRule(
            id="anomaly_temporal",
            name="Off-Hours Activity",
            description="Activity deviating from the usual volume for this hour",
            rule_type=AnomalyRuleType.TEMPORAL_ANOMALY,
            parameters=TemporalAnomalyParams(
                time_buckets=24, deviation_threshold=2.0, min_history_days=3
            ),
            confidence_threshold=0.8,
        ),
        AnomalyDetectionRule(
            id="anomaly_security_cluster",
            name="Security Event Cluster",
            description="Burst of security-related events",
            rule_type=AnomalyRuleType.SECURITY_CLUSTER,
            parameters=SecurityClusterParams(
                cluster_window=600,
                security_keywords=["failed", "unauthorized", "denied", "blocked", "attack"],
                cluster_threshold=5,
                confidence_boost=1.2,
            ),
            confidence_threshold=0.85,
        ),
    ]
