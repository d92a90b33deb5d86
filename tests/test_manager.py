"""Tests for the alert lifecycle: triggering, escalation, resolution."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import T0, hook_url, make_event, webhook_channel

from sentinel.detection.dispatcher import ChannelDispatcher
from sentinel.detection.evaluator import RuleEvaluator
from sentinel.detection.manager import AlertManager
from sentinel.detection.registry import ChannelRegistry
from sentinel.detection.rules import RuleStore
from sentinel.models.alerts import AlertHistoryFilter, AlertStatus
from sentinel.models.rules import (
    AlertRule,
    EscalationLevel,
    PatternCondition,
    RateCondition,
    RuleType,
)


def _rule(rule_id="critical", escalation=None, **condition) -> AlertRule:
    return AlertRule(
        id=rule_id,
        name=f"Rule {rule_id}",
        type=RuleType.PATTERN,
        condition=PatternCondition(**(condition or {"severity": ["critical"]})),
        channels=["primary"],
        cooldown_seconds=0,
        escalation_levels=escalation or [],
    )


@pytest.fixture
async def build_manager(store, transport):
    managers = []

    async def _build(*rules, sink=None, status_sink=None) -> AlertManager:
        registry = ChannelRegistry(store)
        await registry.load(seed_channels=[webhook_channel("primary"), webhook_channel("oncall")])
        rule_store = RuleStore(store, seed_rules=list(rules))
        await rule_store.load()
        manager = AlertManager(
            store,
            rule_store,
            RuleEvaluator(),
            ChannelDispatcher(registry, transport),
            alert_sink=sink,
            status_sink=status_sink,
        )
        managers.append(manager)
        return manager

    yield _build

    for manager in managers:
        await manager.shutdown()


class TestProcessEvent:
    async def test_trigger_persists_alert_and_results(self, store, transport, build_manager):
        manager = await build_manager(_rule())

        alerts = await manager.process_event(make_event("disk failure", severity="critical"), T0)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.status == AlertStatus.TRIGGERED
        assert alert.escalation_level == 0
        assert alert.notification_results["primary"].success
        assert alert.successful_channels == ["primary"]
        stored = await store.get_alert(alert.alert_id)
        assert stored.notification_results["primary"].success
        assert transport.urls() == [hook_url("primary")]

    async def test_trigger_updates_rule_stats(self, store, build_manager):
        manager = await build_manager(_rule())

        await manager.process_event(make_event(severity="critical"), T0)

        assert manager.rules.get("critical").trigger_count == 1
        stored = await store.load_rules()
        assert stored[0].trigger_count == 1
        assert stored[0].last_triggered_at == T0

    async def test_rules_evaluated_in_storage_order(self, build_manager):
        manager = await build_manager(_rule("first"), _rule("second"))

        alerts = await manager.process_event(make_event(severity="critical"), T0)

        assert [a.rule_id for a in alerts] == ["first", "second"]

    async def test_failing_rule_does_not_block_others(self, build_manager, monkeypatch):
        manager = await build_manager(_rule("broken"), _rule("healthy"))
        original = manager.evaluator.evaluate

        def evaluate(rule, event, timestamp=None):
            if rule.id == "broken":
                raise RuntimeError("boom")
            return original(rule, event, timestamp)

        monkeypatch.setattr(manager.evaluator, "evaluate", evaluate)

        alerts = await manager.process_event(make_event(severity="critical"), T0)

        assert [a.rule_id for a in alerts] == ["healthy"]

    async def test_sink_receives_alert_and_failures_are_contained(self, build_manager):
        sink = AsyncMock(side_effect=RuntimeError("redis down"))
        manager = await build_manager(_rule(), sink=sink)

        alerts = await manager.process_event(make_event(severity="critical"), T0)

        assert len(alerts) == 1
        sink.assert_awaited_once()
        assert sink.await_args.args[0].alert_id == alerts[0].alert_id

    async def test_rate_rule_scenario(self, build_manager):
        """Five errors in ten seconds against a 5-in-60s rule give one alert."""
        rule = AlertRule(
            id="rate",
            name="Errors",
            type=RuleType.RATE,
            condition=RateCondition(severity=["error"], count=5, time_window_seconds=60),
            channels=["primary"],
        )
        manager = await build_manager(rule)

        alerts = []
        for i in range(5):
            alerts += await manager.process_event(
                make_event(severity="error"), T0 + timedelta(seconds=2 * i)
            )

        assert len(alerts) == 1
        assert alerts[0].status == AlertStatus.TRIGGERED
        assert alerts[0].escalation_level == 0


class TestEscalation:
    async def test_resolved_alert_is_not_escalated(self, transport, build_manager):
        """Resolving before the level fires means no escalation sends."""
        rule = _rule(escalation=[EscalationLevel(delay_seconds=1, channels=["oncall"])])
        manager = await build_manager(rule)

        [alert] = await manager.process_event(make_event(severity="critical"))
        assert manager.escalations.pending(alert.alert_id) == [1]

        await asyncio.sleep(0.2)
        resolved = await manager.resolve_alert(alert.alert_id, resolved_by="oncall-bob")
        await asyncio.sleep(1.2)

        assert resolved.status == AlertStatus.RESOLVED
        assert hook_url("oncall") not in transport.urls()
        assert manager.escalations.pending(alert.alert_id) == []

    async def test_unresolved_alert_escalates(self, store, transport, build_manager):
        rule = _rule(escalation=[EscalationLevel(delay_seconds=1, channels=["oncall"])])
        manager = await build_manager(rule)

        [alert] = await manager.process_event(make_event(severity="critical"))
        await asyncio.sleep(1.3)

        assert transport.urls().count(hook_url("oncall")) == 1
        stored = await store.get_alert(alert.alert_id)
        assert stored.escalation_level == 1
        assert stored.escalation_results[1]["oncall"].success
        current = await manager.get_alert(alert.alert_id)
        assert current.escalation_level == 1

    async def test_resolution_written_to_store_stops_escalation(
        self, store, transport, build_manager
    ):
        """An alert resolved by another process is not escalated."""
        rule = _rule(escalation=[EscalationLevel(delay_seconds=1, channels=["oncall"])])
        manager = await build_manager(rule)

        [alert] = await manager.process_event(make_event(severity="critical"))
        stored = await store.get_alert(alert.alert_id)
        await store.update_alert_status(stored.resolve("other-process"))
        await asyncio.sleep(1.3)

        assert transport.urls() == [hook_url("primary")]
        current = await manager.get_alert(alert.alert_id)
        assert current.status == AlertStatus.RESOLVED
        assert current.escalation_level == 0

    async def test_failed_level_does_not_block_next(self, store, transport, build_manager):
        transport.fail_urls.add(hook_url("oncall"))
        rule = _rule(
            escalation=[
                EscalationLevel(delay_seconds=1, channels=["oncall"]),
                EscalationLevel(delay_seconds=2, channels=["primary"]),
            ]
        )
        manager = await build_manager(rule)

        [alert] = await manager.process_event(make_event(severity="critical"))
        assert manager.escalations.pending(alert.alert_id) == [1, 2]
        await asyncio.sleep(2.3)

        stored = await store.get_alert(alert.alert_id)
        assert stored.escalation_level == 2
        assert not stored.escalation_results[1]["oncall"].success
        assert stored.escalation_results[2]["primary"].success
        assert transport.urls().count(hook_url("primary")) == 2

    async def test_status_changes_reach_status_sink(self, build_manager):
        status_sink = AsyncMock()
        manager = await build_manager(_rule(), status_sink=status_sink)

        [alert] = await manager.process_event(make_event(severity="critical"))
        await manager.acknowledge_alert(alert.alert_id, acknowledged_by="alice")
        await manager.resolve_alert(alert.alert_id, resolved_by="bob")
        await manager.resolve_alert(alert.alert_id, resolved_by="bob")

        statuses = [call.args[0].status for call in status_sink.await_args_list]
        assert statuses == [AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED]

    async def test_acknowledge_keeps_escalation(self, build_manager):
        rule = _rule(escalation=[EscalationLevel(delay_seconds=30, channels=["oncall"])])
        manager = await build_manager(rule)

        [alert] = await manager.process_event(make_event(severity="critical"))
        acked = await manager.acknowledge_alert(alert.alert_id, acknowledged_by="alice")

        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert manager.escalations.pending(alert.alert_id) == [1]

    async def test_shutdown_cancels_pending(self, build_manager):
        rule = _rule(escalation=[EscalationLevel(delay_seconds=30, channels=["oncall"])])
        manager = await build_manager(rule)

        await manager.process_event(make_event(severity="critical"))
        await manager.shutdown()

        assert manager.escalations.pending_alerts() == []


class TestQueries:
    async def test_history_and_statistics(self, build_manager):
        manager = await build_manager(_rule())
        for i in range(3):
            await manager.process_event(make_event(severity="critical"), T0 + timedelta(minutes=i))
        [latest] = manager.recent_alerts(limit=1)
        await manager.resolve_alert(latest.alert_id)

        history = await manager.get_alert_history(AlertHistoryFilter(status=AlertStatus.RESOLVED))
        stats = await manager.get_alert_statistics(T0 + timedelta(hours=1))

        assert [a.alert_id for a in history] == [latest.alert_id]
        assert stats.total == 3
        assert stats.resolved == 1
        assert stats.active == 2

    async def test_resolve_unknown_alert(self, build_manager):
        manager = await build_manager(_rule())

        assert await manager.resolve_alert("missing") is None
