"""
Escalation scheduler for unresolved alerts.

One asyncio task is scheduled per escalation level. When a level comes due
the alert is fetched again; if it is missing or resolved the level is
skipped, otherwise the level's channels are notified and the alert's
escalation level is advanced.

Resolving an alert cancels its pending levels. The fire-time status check
stays in place for alerts resolved through another process.

Example:
    >>> scheduler = EscalationScheduler(dispatcher, lookup=manager.get_alert,
    ...                                 record=manager.record_escalation)
    >>> scheduler.schedule(alert, rule.escalation_levels)
    >>> scheduler.pending(alert.alert_id)
    [1, 2]
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from sentinel.detection.channels import render_message
from sentinel.detection.dispatcher import ChannelDispatcher
from sentinel.models.alerts import Alert
from sentinel.models.channels import NotificationResult
from sentinel.models.events import utc_now
from sentinel.models.rules import EscalationLevel

logger = structlog.get_logger(__name__)

AlertLookup = Callable[[str], Awaitable[Optional[Alert]]]
EscalationRecorder = Callable[[str, int, Dict[str, NotificationResult], datetime], Awaitable[None]]


def escalation_title(level: int, rule_name: str) -> str:
    """Title used for escalation notifications."""
    return f"🔥 ESCALATION Level {level}: {rule_name}"


def escalation_description(original_message: str) -> str:
    """Description used for escalation notifications."""
    return (
        "Alert has not been resolved and is being escalated.\n\n"
        f"Original: {original_message}"
    )


class EscalationScheduler:
    """
    Owns the detached escalation tasks, keyed by alert id and level.

    Attributes:
        dispatcher: Channel fan-out used for escalation notifications.
        lookup: Fetches the current version of an alert.
        record: Persists an executed escalation level.
        _tasks: Pending tasks keyed by alert id, then level number.

    Example:
        >>> scheduler.schedule(alert, levels)
        >>> scheduler.cancel(alert.alert_id)
        2
    """

    def __init__(
        self,
        dispatcher: ChannelDispatcher,
        lookup: AlertLookup,
        record: EscalationRecorder,
    ) -> None:
        self.dispatcher = dispatcher
        self.lookup = lookup
        self.record = record
        self._tasks: Dict[str, Dict[int, asyncio.Task]] = {}

    def schedule(self, alert: Alert, levels: Sequence[EscalationLevel]) -> List[int]:
        """
        Schedule every escalation level of an alert.

        Levels are numbered 1..N in ascending delay order. Each fires
        ``delay_seconds`` after scheduling, which happens as the alert triggers.

        Args:
            alert: Newly triggered alert.
            levels: Escalation levels of the rule.

        Returns:
            List[int]: Scheduled level numbers.
        """
        ordered = sorted(levels, key=lambda level: level.delay_seconds)
        scheduled: List[int] = []

        for number, level in enumerate(ordered, start=1):
            task = asyncio.create_task(
                self._run_level(
                    alert.alert_id, alert.rule_name, number, level, float(level.delay_seconds)
                ),
                name=f"escalation:{alert.alert_id}:{number}",
            )
            self._tasks.setdefault(alert.alert_id, {})[number] = task
            task.add_done_callback(
                lambda _t, alert_id=alert.alert_id, n=number: self._discard(alert_id, n)
            )
            scheduled.append(number)

            logger.info(
                "escalation_scheduled",
                alert_id=alert.alert_id,
                level=number,
                delay_seconds=level.delay_seconds,
                channels=level.channels,
            )

        return scheduled

    def _discard(self, alert_id: str, level: int) -> None:
        levels = self._tasks.get(alert_id)
        if levels is None:
            return
        levels.pop(level, None)
        if not levels:
            self._tasks.pop(alert_id, None)

    async def _run_level(
        self,
        alert_id: str,
        rule_name: str,
        level: int,
        escalation: EscalationLevel,
        wait_seconds: float,
    ) -> None:
        if wait_seconds > 0:
            await asyncio.sleep(wait_seconds)

        try:
            alert = await self.lookup(alert_id)
            if alert is None or alert.is_resolved:
                logger.info(
                    "escalation_skipped",
                    alert_id=alert_id,
                    level=level,
                    reason="missing" if alert is None else "resolved",
                )
                return

            logger.info(
                "escalation_executing",
                alert_id=alert_id,
                level=level,
                channels=escalation.channels,
            )

            message = render_message(
                alert,
                title=escalation_title(level, rule_name),
                description=escalation_description(alert.event.message),
            )
            now = utc_now()
            results = await self.dispatcher.dispatch(escalation.channels, message, now)
            await self.record(alert_id, level, results, now)

        except Exception as e:
            logger.error(
                "escalation_failed",
                alert_id=alert_id,
                level=level,
                error=str(e),
            )

    def pending(self, alert_id: str) -> List[int]:
        """
        Level numbers still waiting to fire for an alert.

        Returns:
            List[int]: Pending level numbers in ascending order.
        """
        levels = self._tasks.get(alert_id, {})
        return sorted(n for n, task in levels.items() if not task.done())

    def pending_alerts(self) -> List[str]:
        """Alert ids with at least one pending level."""
        return [alert_id for alert_id in self._tasks if self.pending(alert_id)]

    def cancel(self, alert_id: str) -> int:
        """
        Cancel every pending level of an alert.

        Returns:
            int: Number of cancelled levels.
        """
        levels = self._tasks.pop(alert_id, {})
        cancelled = 0
        for task in levels.values():
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.info("escalation_cancelled", alert_id=alert_id, levels=cancelled)
        return cancelled

    async def shutdown(self) -> None:
        """Cancel all pending escalations and wait for the tasks to finish."""
        tasks = [task for levels in self._tasks.values() for task in levels.values()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("escalation_scheduler_shutdown", cancelled=len(tasks))
