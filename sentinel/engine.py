"""
Engine facade for the alerting and anomaly layer.

This module wires the rule engine, notification dispatch, escalation and
anomaly detection into one SentinelEngine that owns all in-process state
(rule registry, channel registry, cooldowns, rate windows, escalation
timers, recent-alert cache). There are no module-level globals: two
engines in one process are fully independent.

Event flow:
    1. The event is recorded for the statistical detectors (best effort)
    2. Every enabled alert rule is evaluated in storage order
    3. Every enabled anomaly rule is scored; anomalies at or above the alert
       confidence are fed back through the alert rules as synthetic events

Example:
    >>> engine = create_engine(InMemoryAlertStore(), config)
    >>> await engine.initialize()
    >>> result = await engine.process_event(LogEvent(severity="critical", message="disk failure on node-7"))
    >>> [a.rule_name for a in result.alerts]
    ['Critical System Alert']
    >>> await engine.shutdown()
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog

from sentinel.anomaly import AnomalyScorer, BaselineManager, FeatureExtractor, ModelTrainer
from sentinel.config.models import AppConfig
from sentinel.detection import (
    AlertManager,
    AlertSink,
    ChannelDispatcher,
    ChannelRegistry,
    RuleEvaluator,
    RuleStore,
)
from sentinel.detection.channels import create_transport
from sentinel.detection.channels.base import NotificationTransport
from sentinel.errors import ModelError, PersistenceError
from sentinel.models.alerts import Alert, AlertHistoryFilter, AlertStatistics
from sentinel.models.anomaly import (
    AnomalyDetection,
    AnomalyStatistics,
    BaselinePattern,
    StatisticalModel,
)
from sentinel.models.channels import NotificationChannelConfig
from sentinel.models.events import LogEvent, utc_now
from sentinel.models.rules import AlertRule
from sentinel.storage.base import AlertStore

logger = structlog.get_logger(__name__)


@dataclass
class EngineContext:
    """
    Collaborators and state owned by one engine instance.

    Attributes:
        store: Persistence collaborator.
        transport: Notification delivery transport.
        registry: Notification channels.
        rules: Alert rules in storage order.
        evaluator: Cooldowns and rate windows.
        dispatcher: Channel fan-out.
        manager: Alert lifecycle and escalation.
        extractor: Feature extractor shared by scoring and training.
        baselines: Learned source/hourly baselines.
        scorer: Anomaly detectors.
        trainer: Statistical model trainer.
    """

    store: AlertStore
    transport: NotificationTransport
    registry: ChannelRegistry
    rules: RuleStore
    evaluator: RuleEvaluator
    dispatcher: ChannelDispatcher
    manager: AlertManager
    extractor: FeatureExtractor
    baselines: BaselineManager
    scorer: AnomalyScorer
    trainer: ModelTrainer


@dataclass
class ProcessingResult:
    """
    Outcome of processing one event.

    Attributes:
        event_id: Processed event.
        alerts: Alerts triggered directly by the event.
        anomalies: Anomalies detected for the event.
    """

    event_id: str
    alerts: List[Alert] = field(default_factory=list)
    anomalies: List[AnomalyDetection] = field(default_factory=list)


class SentinelEngine:
    """
    Real-time alerting and anomaly decision engine.

    Attributes:
        config: Application configuration.
        context: Owned collaborators and state.
        is_initialized: Whether rules and channels have been loaded.

    Example:
        >>> engine = create_engine(store, config, transport=transport)
        >>> await engine.initialize()
        >>> await engine.process_event(event)
    """

    def __init__(
        self,
        config: AppConfig,
        context: EngineContext,
        owns_transport: bool = False,
    ) -> None:
        self.config = config
        self.context = context
        self.is_initialized = False
        self._owns_transport = owns_transport

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """
        Load channels, alert rules, anomaly rules and the active model.

        Store failures fall back to the configured seeds or built-in
        defaults; the engine always starts.
        """
        ctx = self.context

        await ctx.registry.load(seed_channels=self.config.rules.channels)
        rules = await ctx.rules.load()

        for rule in rules:
            ctx.evaluator.cooldowns.seed(rule.id, rule.last_triggered_at)

        if self.config.anomaly.enabled:
            await ctx.scorer.load_rules(seed_rules=self.config.anomaly.rules)
            try:
                await ctx.trainer.load_active_model()
            except PersistenceError as e:
                logger.warning("active_model_load_failed", **e.log_fields())

        self.is_initialized = True
        logger.info(
            "engine_initialized",
            rules=len(ctx.rules),
            channels=len(ctx.registry.all()),
            anomaly_rules=len(ctx.scorer.rules()),
            anomaly_enabled=self.config.anomaly.enabled,
        )

    async def shutdown(self) -> None:
        """Cancel pending escalations and close the transport if owned."""
        await self.context.manager.shutdown()
        if self._owns_transport:
            close = getattr(self.context.transport, "close", None)
            if close is not None:
                await close()
        self.is_initialized = False
        logger.info("engine_shutdown")

    # =========================================================================
    # EVENT PROCESSING
    # =========================================================================

    async def process_event(
        self,
        event: LogEvent,
        timestamp: Optional[datetime] = None,
    ) -> ProcessingResult:
        """
        Run one event through the alert rules and anomaly detectors.

        Never raises: recording, rule and detector failures are logged.

        Args:
            event: Incoming event.
            timestamp: Evaluation time, defaults to now.

        Returns:
            ProcessingResult: Triggered alerts and detected anomalies.
        """
        now = timestamp or utc_now()
        ctx = self.context
        result = ProcessingResult(event_id=event.id)

        if self.config.dispatch.record_events:
            try:
                await ctx.store.record_event(event)
            except PersistenceError as e:
                logger.warning("event_record_failed", event_id=event.id, error=str(e))

        try:
            result.alerts = await ctx.manager.process_event(event, now)
        except Exception as e:
            logger.error("alert_processing_failed", event_id=event.id, error=str(e))

        if self.config.anomaly.enabled:
            try:
                result.anomalies = await ctx.scorer.analyze(event, now)
            except Exception as e:
                logger.error("anomaly_processing_failed", event_id=event.id, error=str(e))

        return result

    async def test_rules(
        self,
        event: LogEvent,
        rule_ids: Optional[Sequence[str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, bool]:
        """
        Check which rules would fire for an event, without side effects.

        Cooldowns, rate windows, statistics and notifications are untouched.

        Args:
            event: Sample event.
            rule_ids: Rules to test (default: all rules, enabled or not).
            timestamp: Evaluation time, defaults to now.

        Returns:
            Dict[str, bool]: Match outcome per rule id.
        """
        now = timestamp or utc_now()
        wanted = set(rule_ids) if rule_ids is not None else None
        outcome: Dict[str, bool] = {}
        for rule in self.context.rules.all():
            if wanted is not None and rule.id not in wanted:
                continue
            outcome[rule.id] = self.context.evaluator.test(rule, event, now)
        return outcome

    # =========================================================================
    # RULE ADMINISTRATION
    # =========================================================================

    def list_rules(self) -> List[AlertRule]:
        """All alert rules in storage order."""
        return self.context.rules.all()

    async def create_rule(self, rule: AlertRule) -> AlertRule:
        """Add or replace an alert rule; its evaluation state starts fresh."""
        self.context.evaluator.forget_rule(rule.id)
        return await self.context.rules.create(rule)

    async def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> Optional[AlertRule]:
        """
        Apply a partial update to an alert rule.

        The rule's rate window is cleared; its cooldown is kept.

        Returns:
            Optional[AlertRule]: Updated rule, or None if unknown.

        Raises:
            pydantic.ValidationError: If the merged rule is invalid.
        """
        updated = await self.context.rules.update(rule_id, updates)
        if updated is not None:
            self.context.evaluator.rate_windows.clear(rule_id)
        return updated

    async def delete_rule(self, rule_id: str) -> bool:
        """Delete an alert rule and drop its evaluation state."""
        deleted = await self.context.rules.delete(rule_id)
        if deleted:
            self.context.evaluator.forget_rule(rule_id)
        return deleted

    # =========================================================================
    # CHANNEL ADMINISTRATION
    # =========================================================================

    def list_channels(self) -> List[NotificationChannelConfig]:
        """All registered notification channels."""
        return self.context.registry.all()

    async def create_channel(self, channel: NotificationChannelConfig) -> NotificationChannelConfig:
        """Register or replace a notification channel."""
        return await self.context.registry.create(channel)

    async def update_channel(
        self,
        channel_id: str,
        updates: Dict[str, Any],
    ) -> Optional[NotificationChannelConfig]:
        """Apply a partial update to a notification channel."""
        return await self.context.registry.update(channel_id, updates)

    async def delete_channel(self, channel_id: str) -> bool:
        """Remove a notification channel."""
        return await self.context.registry.delete(channel_id)

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def get_alert_history(self, query: Optional[AlertHistoryFilter] = None) -> List[Alert]:
        """Stored alerts matching the filter, newest first."""
        return await self.context.manager.get_alert_history(query)

    async def get_alert_statistics(self, now: Optional[datetime] = None) -> AlertStatistics:
        """Alert counts by status and severity."""
        return await self.context.manager.get_alert_statistics(now)

    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: str = "system",
        timestamp: Optional[datetime] = None,
    ) -> Optional[Alert]:
        """Resolve an alert and cancel its pending escalations."""
        return await self.context.manager.resolve_alert(alert_id, resolved_by, timestamp)

    async def acknowledge_alert(
        self,
        alert_id: str,
        acknowledged_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[Alert]:
        """Acknowledge an alert."""
        return await self.context.manager.acknowledge_alert(alert_id, acknowledged_by, timestamp)

    def pending_escalations(self) -> Dict[str, List[int]]:
        """Pending escalation levels keyed by alert id."""
        escalations = self.context.manager.escalations
        return {alert_id: escalations.pending(alert_id) for alert_id in escalations.pending_alerts()}

    # =========================================================================
    # ANOMALIES
    # =========================================================================

    def recent_anomalies(self, limit: int = 50) -> List[AnomalyDetection]:
        """Most recent anomalies, newest first."""
        return self.context.scorer.recent_anomalies(limit)

    async def resolve_anomaly(
        self,
        detection_id: str,
        resolved_by: Optional[str] = None,
    ) -> Optional[AnomalyDetection]:
        """Mark an anomaly resolved."""
        return await self.context.scorer.resolve_anomaly(detection_id, resolved_by)

    async def mark_false_positive(
        self,
        detection_id: str,
        resolved_by: Optional[str] = None,
    ) -> Optional[AnomalyDetection]:
        """Flag an anomaly as a false positive; it is left out of training."""
        return await self.context.scorer.mark_false_positive(detection_id, resolved_by)

    async def get_anomaly_statistics(self, now: Optional[datetime] = None) -> AnomalyStatistics:
        """Anomaly counts by type and severity."""
        return await self.context.scorer.get_statistics(now)

    # =========================================================================
    # BACKGROUND JOBS
    # =========================================================================

    async def update_baselines(self, now: Optional[datetime] = None) -> List[BaselinePattern]:
        """Refresh the learned source and hourly baselines."""
        return await self.context.baselines.update_baselines(now)

    async def train_model(self, now: Optional[datetime] = None) -> Optional[StatisticalModel]:
        """
        Run one training cycle.

        Insufficient training data is logged and yields None.

        Raises:
            PersistenceError: If the store cannot be read or written.
        """
        try:
            return await self.context.trainer.train(now)
        except ModelError as e:
            logger.warning("model_training_skipped", **e.log_fields())
            return None

    def status(self) -> Dict[str, Any]:
        """Engine state summary."""
        ctx = self.context
        return {
            "initialized": self.is_initialized,
            "rules": len(ctx.rules),
            "enabled_rules": len(ctx.rules.enabled_rules()),
            "channels": len(ctx.registry.all()),
            "pending_escalations": len(ctx.manager.escalations.pending_alerts()),
            "anomaly": dict(ctx.scorer.stats),
            "training": ctx.trainer.status(),
        }


def create_engine(
    store: AlertStore,
    config: Optional[AppConfig] = None,
    transport: Optional[NotificationTransport] = None,
    alert_sink: Optional[AlertSink] = None,
    status_sink: Optional[AlertSink] = None,
) -> SentinelEngine:
    """
    Factory function to create a SentinelEngine.

    Args:
        store: Persistence collaborator.
        config: Application configuration (default: AppConfig()).
        transport: Delivery transport (default: aiohttp/smtplib transport
                   built from the dispatch config, closed on shutdown).
        alert_sink: Optional async callback receiving every triggered alert.
        status_sink: Optional async callback receiving acknowledged and
                     resolved alerts.

    Returns:
        SentinelEngine: Engine ready for ``initialize()``.
    """
    config = config or AppConfig()
    dispatch = config.dispatch
    owns_transport = transport is None
    if transport is None:
        transport = create_transport(
            timeout_seconds=dispatch.send_timeout_seconds,
            smtp_host=dispatch.smtp.host,
            smtp_port=dispatch.smtp.port,
            smtp_username=dispatch.smtp.username,
            smtp_password=dispatch.smtp.password,
            smtp_use_tls=dispatch.smtp.use_tls,
        )

    registry = ChannelRegistry(store)
    rules = RuleStore(store, seed_rules=config.rules.rules)
    evaluator = RuleEvaluator()
    dispatcher = ChannelDispatcher(
        registry,
        transport,
        send_timeout_seconds=dispatch.send_timeout_seconds,
    )
    manager = AlertManager(
        store,
        rules,
        evaluator,
        dispatcher,
        alert_cache_size=dispatch.alert_cache_size,
        alert_sink=alert_sink,
        status_sink=status_sink,
    )

    extractor = FeatureExtractor()
    baselines = BaselineManager(store)
    scorer = AnomalyScorer(
        store,
        extractor=extractor,
        baselines=baselines,
        alert_callback=manager.process_event,
        alert_confidence=config.anomaly.alert_confidence,
        recent_buffer_size=config.anomaly.recent_buffer_size,
    )
    trainer = ModelTrainer(store, extractor=extractor, config=config.anomaly.training)

    context = EngineContext(
        store=store,
        transport=transport,
        registry=registry,
        rules=rules,
        evaluator=evaluator,
        dispatcher=dispatcher,
        manager=manager,
        extractor=extractor,
        baselines=baselines,
        scorer=scorer,
        trainer=trainer,
    )
    return SentinelEngine(config, context, owns_transport=owns_transport)
