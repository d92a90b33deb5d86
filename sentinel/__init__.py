"""
Sentinel: real-time alerting and anomaly decision layer for log streams.

Sentinel evaluates incoming log/telemetry events against configurable
alert rules, suppresses duplicates with per-rule cooldowns, fans out
notifications across channels, escalates unresolved alerts, and runs a
statistical anomaly detector whose findings re-enter the same pipeline.

Packages:
    models: Pydantic data models (events, rules, channels, alerts, anomalies)
    config: YAML configuration loading and validation
    detection: Rule evaluation, notification dispatch, escalation
    anomaly: Feature extraction, anomaly scoring, model training
    storage: Persistence collaborators (in-memory, PostgreSQL, Redis)
    services: Long-running service entry points

Modules:
    engine: SentinelEngine facade owning all per-instance state
    scheduling: Interval and daily background jobs
    errors: Exception hierarchy

Example:
    >>> from sentinel.engine import create_engine
    >>> engine = create_engine(store)
    >>> await engine.initialize()
    >>> result = await engine.process_event(event)
"""

__version__ = "1.0.0"
