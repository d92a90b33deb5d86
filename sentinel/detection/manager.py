"""
Alert manager for alert lifecycle management.

This module provides the AlertManager class which orchestrates the complete
alert lifecycle: evaluation, triggering, notification fan-out, escalation,
acknowledgment and resolution.

Key Features:
    - Evaluates every enabled rule per event, in storage order
    - Isolates rule failures so one broken rule never blocks the others
    - Persists alerts and their per-channel notification outcomes
    - Schedules escalation levels and cancels them on resolution
    - Keeps a bounded cache of recent alerts
    - Publishes triggered alerts to an optional sink (e.g., Redis)
    - Publishes acknowledgements and resolutions to an optional status sink

Example:
    >>> manager = AlertManager(store, rules, evaluator, dispatcher)
    >>> alerts = await manager.process_event(event)
    >>> await manager.resolve_alert(alerts[0].alert_id, resolved_by="oncall")
"""

from collections import OrderedDict
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from sentinel.detection.channels import render_message
from sentinel.detection.dispatcher import ChannelDispatcher
from sentinel.detection.escalation import EscalationScheduler
from sentinel.detection.evaluator import RuleEvaluator
from sentinel.detection.rules import RuleStore
from sentinel.errors import PersistenceError
from sentinel.models.alerts import Alert, AlertHistoryFilter, AlertStatistics
from sentinel.models.channels import NotificationResult
from sentinel.models.events import LogEvent, utc_now
from sentinel.models.rules import AlertRule
from sentinel.storage.base import AlertStore

logger = structlog.get_logger(__name__)

AlertSink = Callable[[Alert], Awaitable[None]]

# Default configuration values
DEFAULT_ALERT_CACHE_SIZE = 1000


class AlertManager:
    """
    Orchestrates the complete alert lifecycle.

    Responsibilities:
    - Evaluate events against all enabled rules
    - Create Alert objects when a rule fires and start its cooldown
    - Fan notifications out to the rule's channels
    - Schedule escalation for rules that define it
    - Acknowledge and resolve alerts (resolution cancels escalation)

    Attributes:
        store: Persistence collaborator.
        rules: Rule registry.
        evaluator: Rule evaluator (cooldowns and rate windows).
        dispatcher: Channel fan-out.
        escalations: Owned escalation scheduler.
        alert_sink: Optional callback receiving every triggered alert.
        status_sink: Optional callback receiving acknowledged and resolved alerts.
        _recent: Bounded cache of recent alerts keyed by id.

    Example:
        >>> manager = AlertManager(
        ...     store=store,
        ...     rules=rule_store,
        ...     evaluator=RuleEvaluator(),
        ...     dispatcher=dispatcher,
        ... )
        >>> alerts = await manager.process_event(event, timestamp=now)
    """

    def __init__(
        self,
        store: AlertStore,
        rules: RuleStore,
        evaluator: RuleEvaluator,
        dispatcher: ChannelDispatcher,
        alert_cache_size: int = DEFAULT_ALERT_CACHE_SIZE,
        alert_sink: Optional[AlertSink] = None,
        status_sink: Optional[AlertSink] = None,
    ) -> None:
        """
        Initialize the AlertManager.

        Args:
            store: Persistence collaborator.
            rules: Rule registry.
            evaluator: Rule evaluator.
            dispatcher: Channel fan-out.
            alert_cache_size: Recent alerts kept in memory.
            alert_sink: Optional async callback for triggered alerts.
            status_sink: Optional async callback for status changes.
        """
        self.store = store
        self.rules = rules
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self.alert_cache_size = alert_cache_size
        self.alert_sink = alert_sink
        self.status_sink = status_sink
        self.escalations = EscalationScheduler(
            dispatcher,
            lookup=self.get_alert,
            record=self.record_escalation,
        )
        self._recent: "OrderedDict[str, Alert]" = OrderedDict()

        logger.info(
            "alert_manager_initialized",
            rules=len(rules),
            alert_cache_size=alert_cache_size,
        )

    # =========================================================================
    # EVENT PROCESSING
    # =========================================================================

    async def process_event(
        self,
        event: LogEvent,
        timestamp: Optional[datetime] = None,
    ) -> List[Alert]:
        """
        Evaluate an event against every enabled rule.

        Rules are evaluated in storage order. A failure while evaluating or
        triggering one rule is logged and does not affect the others.

        Args:
            event: Incoming event.
            timestamp: Evaluation time, defaults to now.

        Returns:
            List[Alert]: Alerts triggered by this event.
        """
        now = timestamp or utc_now()
        triggered: List[Alert] = []

        for rule in self.rules.enabled_rules():
            try:
                if not self.evaluator.evaluate(rule, event, now):
                    continue
                triggered.append(await self.trigger(rule, event, now))
            except Exception as e:
                logger.error(
                    "rule_processing_failed",
                    rule_id=rule.id,
                    event_id=event.id,
                    error=str(e),
                )

        return triggered

    async def trigger(
        self,
        rule: AlertRule,
        event: LogEvent,
        timestamp: Optional[datetime] = None,
    ) -> Alert:
        """
        Trigger an alert for a rule.

        Args:
            rule: Rule that fired.
            event: Triggering event.
            timestamp: Trigger time, defaults to now.

        Returns:
            Alert: The alert with its notification results.
        """
        now = timestamp or utc_now()
        alert = Alert(
            rule_id=rule.id,
            rule_name=rule.name,
            severity=rule.severity,
            triggered_at=now,
            event=event,
            channels=list(rule.channels),
        )
        self.evaluator.record_trigger(rule.id, now)
        self._remember(alert)

        logger.info(
            "alert_triggered",
            alert_id=alert.alert_id,
            rule_id=rule.id,
            rule_name=rule.name,
            severity=rule.severity.value,
            event_id=event.id,
        )

        try:
            await self.store.save_alert(alert)
        except PersistenceError as e:
            logger.error("alert_save_failed", alert_id=alert.alert_id, error=str(e))

        results = await self.dispatcher.dispatch(rule.channels, render_message(alert), now)
        alert = alert.with_results(results)
        self._remember(alert)
        logger.info(
            "alert_notified",
            alert_id=alert.alert_id,
            delivered=alert.successful_channels,
            failed=len(results) - len(alert.successful_channels),
        )

        try:
            await self.store.update_alert_results(alert.alert_id, results)
        except PersistenceError as e:
            logger.error("alert_results_save_failed", alert_id=alert.alert_id, error=str(e))

        if rule.has_escalation:
            self.escalations.schedule(alert, rule.escalation_levels)

        await self.rules.record_trigger(rule.id, now)

        await self._emit(self.alert_sink, alert)
        return alert

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def _emit(self, sink: Optional[AlertSink], alert: Alert) -> None:
        if sink is None:
            return
        try:
            await sink(alert)
        except Exception as e:
            logger.warning(
                "alert_sink_failed",
                alert_id=alert.alert_id,
                status=alert.status.value,
                error=str(e),
            )

    def _remember(self, alert: Alert) -> None:
        self._recent[alert.alert_id] = alert
        self._recent.move_to_end(alert.alert_id)
        while len(self._recent) > self.alert_cache_size:
            self._recent.popitem(last=False)

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        """
        Fetch the current version of an alert.

        The store is authoritative, so a status change written by another
        process is seen here. The recent-alert cache answers only when the
        store cannot be read or never received the alert.

        Returns:
            Optional[Alert]: The alert, or None if unknown.
        """
        try:
            stored = await self.store.get_alert(alert_id)
        except PersistenceError as e:
            logger.warning("alert_fetch_failed", alert_id=alert_id, error=str(e))
            stored = None
        if stored is not None:
            return stored
        return self._recent.get(alert_id)

    async def record_escalation(
        self,
        alert_id: str,
        level: int,
        results: Dict[str, NotificationResult],
        escalated_at: datetime,
    ) -> None:
        """
        Record an executed escalation level.

        Args:
            alert_id: Escalated alert.
            level: Level that fired.
            results: Per-channel outcomes.
            escalated_at: When the level fired.
        """
        cached = self._recent.get(alert_id)
        if cached is not None:
            self._recent[alert_id] = cached.escalate(level, results, escalated_at)

        logger.info(
            "alert_escalated",
            alert_id=alert_id,
            level=level,
            notified=sum(1 for r in results.values() if r.success),
        )

        try:
            await self.store.update_alert_escalation(alert_id, level, results, escalated_at)
        except PersistenceError as e:
            logger.error("alert_escalation_save_failed", alert_id=alert_id, error=str(e))

    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: str = "system",
        timestamp: Optional[datetime] = None,
    ) -> Optional[Alert]:
        """
        Resolve an alert and cancel its pending escalations.

        Resolving an already resolved alert returns it unchanged.

        Args:
            alert_id: Alert to resolve.
            resolved_by: Operator identifier.
            timestamp: Resolution time, defaults to now.

        Returns:
            Optional[Alert]: The resolved alert, or None if unknown.
        """
        self.escalations.cancel(alert_id)

        alert = await self.get_alert(alert_id)
        if alert is None:
            logger.warning("alert_not_found", alert_id=alert_id)
            return None
        if alert.is_resolved:
            return alert

        resolved = alert.resolve(resolved_by, timestamp or utc_now())
        self._remember(resolved)

        try:
            await self.store.update_alert_status(resolved)
        except PersistenceError as e:
            logger.error("alert_status_save_failed", alert_id=alert_id, error=str(e))

        logger.info(
            "alert_resolved",
            alert_id=alert_id,
            rule_id=resolved.rule_id,
            resolved_by=resolved_by,
        )
        await self._emit(self.status_sink, resolved)
        return resolved

    async def acknowledge_alert(
        self,
        alert_id: str,
        acknowledged_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[Alert]:
        """
        Acknowledge an alert.

        Escalation keeps running until the alert is resolved.

        Returns:
            Optional[Alert]: The updated alert, or None if unknown.
        """
        alert = await self.get_alert(alert_id)
        if alert is None:
            logger.warning("alert_not_found", alert_id=alert_id)
            return None
        if alert.is_resolved:
            return alert

        acknowledged = alert.acknowledge(acknowledged_by, timestamp or utc_now())
        self._remember(acknowledged)

        try:
            await self.store.update_alert_status(acknowledged)
        except PersistenceError as e:
            logger.error("alert_status_save_failed", alert_id=alert_id, error=str(e))

        logger.info("alert_acknowledged", alert_id=alert_id, acknowledged_by=acknowledged_by)
        await self._emit(self.status_sink, acknowledged)
        return acknowledged

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_alert_history(
        self,
        query: Optional[AlertHistoryFilter] = None,
    ) -> List[Alert]:
        """
        List stored alerts, newest first.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        return await self.store.list_alerts(query or AlertHistoryFilter())

    async def get_alert_statistics(self, now: Optional[datetime] = None) -> AlertStatistics:
        """
        Aggregate alert counts.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        return await self.store.alert_statistics(now or utc_now())

    def recent_alerts(self, limit: int = 50) -> List[Alert]:
        """Most recent alerts from the in-memory cache, newest first."""
        return list(reversed(self._recent.values()))[:limit]

    async def shutdown(self) -> None:
        """Cancel pending escalations."""
        await self.escalations.shutdown()
