"""End-to-end tests for the engine facade."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import T0, FakeTransport, hook_url, make_config, make_event, webhook_channel

from sentinel import engine as engine_module
from sentinel.engine import create_engine
from sentinel.errors import PersistenceError
from sentinel.models.alerts import AlertStatus
from sentinel.models.rules import (
    AlertRule,
    EscalationLevel,
    PatternCondition,
    RateCondition,
    RuleType,
)
from sentinel.storage.memory import InMemoryAlertStore


class UnreachableRulesStore(InMemoryAlertStore):
    """Store whose rule and channel tables cannot be read."""

    async def load_rules(self, enabled_only=False):
        raise PersistenceError("connection refused")

    async def load_channels(self):
        raise PersistenceError("connection refused")


def _pattern_rule(rule_id="watch", cooldown=0, escalation=None, **condition) -> AlertRule:
    return AlertRule(
        id=rule_id,
        name=f"Rule {rule_id}",
        type=RuleType.PATTERN,
        condition=PatternCondition(**condition),
        channels=["primary"],
        cooldown_seconds=cooldown,
        escalation_levels=escalation or [],
    )


def _rate_rule() -> AlertRule:
    return AlertRule(
        id="errors",
        name="Error burst",
        type=RuleType.RATE,
        condition=RateCondition(severity=["error"], count=5, time_window_seconds=60),
        channels=["primary"],
    )


@pytest.fixture
async def build_engine(store, transport):
    engines = []

    async def _build(*rules, anomaly_enabled=False, alert_sink=None, target_store=None):
        config = make_config(
            rules=rules,
            channels=[webhook_channel("primary"), webhook_channel("oncall")],
            anomaly_enabled=anomaly_enabled,
        )
        engine = create_engine(
            target_store or store, config, transport=transport, alert_sink=alert_sink
        )
        await engine.initialize()
        engines.append(engine)
        return engine

    yield _build

    for engine in engines:
        await engine.shutdown()


class TestScenarios:
    async def test_rate_rule_fires_once(self, build_engine):
        """Five errors within ten seconds against a 5-in-60s rule."""
        engine = await build_engine(_rate_rule())

        alerts = []
        for i in range(5):
            result = await engine.process_event(
                make_event(severity="error"), T0 + timedelta(seconds=2 * i)
            )
            alerts += result.alerts

        assert len(alerts) == 1
        assert alerts[0].status == AlertStatus.TRIGGERED
        assert alerts[0].escalation_level == 0

    async def test_pattern_rule(self, build_engine):
        engine = await build_engine(_pattern_rule(pattern="(failed|denied)"))

        denied = await engine.process_event(make_event("login denied for user X"), T0)
        accepted = await engine.process_event(make_event("login accepted"), T0)

        assert len(denied.alerts) == 1
        assert accepted.alerts == []

    async def test_resolution_stops_escalation(self, build_engine, transport):
        rule = _pattern_rule(
            severity=["critical"],
            escalation=[EscalationLevel(delay_seconds=1, channels=["oncall"])],
        )
        engine = await build_engine(rule)

        [alert] = (await engine.process_event(make_event(severity="critical"))).alerts
        assert engine.pending_escalations() == {alert.alert_id: [1]}
        await asyncio.sleep(0.3)
        await engine.resolve_alert(alert.alert_id, resolved_by="oncall")
        await asyncio.sleep(1.0)

        assert hook_url("oncall") not in transport.urls()
        assert engine.pending_escalations() == {}


class TestInitialization:
    async def test_defaults_when_nothing_configured(self, build_engine):
        engine = await build_engine()

        result = await engine.process_event(
            make_event("disk failure on node-7", severity="critical"), T0
        )

        assert [r.id for r in engine.list_rules()] == [
            "default_1",
            "default_2",
            "default_3",
            "default_4",
        ]
        assert [a.rule_name for a in result.alerts] == ["Critical System Alert"]

    async def test_unreachable_store_uses_seeds(self, build_engine):
        engine = await build_engine(
            _pattern_rule(severity=["error"]), target_store=UnreachableRulesStore()
        )

        result = await engine.process_event(make_event(severity="error"), T0)

        assert [r.id for r in engine.list_rules()] == ["watch"]
        assert {c.id for c in engine.list_channels()} == {"primary", "oncall"}
        assert len(result.alerts) == 1

    async def test_cooldown_survives_restart(self, store, build_engine):
        rule = _pattern_rule(cooldown=300, severity=["error"]).record_trigger(T0)
        await store.save_rule(rule)

        engine = await build_engine()
        inside = await engine.process_event(make_event(severity="error"), T0 + timedelta(seconds=10))
        after = await engine.process_event(make_event(severity="error"), T0 + timedelta(seconds=300))

        assert inside.alerts == []
        assert len(after.alerts) == 1


class TestProcessing:
    async def test_events_are_recorded(self, store, build_engine):
        engine = await build_engine(_pattern_rule(severity=["critical"]))

        await engine.process_event(make_event("hello"), T0)

        assert [e.message for e in store.events] == ["hello"]

    async def test_alert_failure_never_escapes(self, build_engine, monkeypatch):
        engine = await build_engine(_pattern_rule(severity=["info"]))
        monkeypatch.setattr(
            engine.context.manager, "process_event", AsyncMock(side_effect=RuntimeError("boom"))
        )

        result = await engine.process_event(make_event(), T0)

        assert result.alerts == []

    async def test_anomaly_feeds_back_into_alerting(self, store, transport, build_engine):
        """A new source raises an anomaly whose synthetic event re-enters the rules."""
        sink = AsyncMock()
        engine = await build_engine(
            _pattern_rule(severity=["info"]), anomaly_enabled=True, alert_sink=sink
        )

        result = await engine.process_event(make_event("service started", source="edge-7"), T0)

        assert len(result.alerts) == 1
        assert [d.anomaly_type.value for d in result.anomalies] == ["source_anomaly"]
        assert sink.await_count == 2
        synthetic_alert = sink.await_args_list[1].args[0]
        assert synthetic_alert.event.anomaly_detected
        assert transport.urls() == [hook_url("primary"), hook_url("primary")]
        assert engine.recent_anomalies()[0].id == result.anomalies[0].id

    async def test_anomaly_disabled(self, build_engine):
        engine = await build_engine(_pattern_rule(severity=["info"]))

        result = await engine.process_event(make_event(source="edge-7"), T0)

        assert result.anomalies == []
        assert engine.status()["anomaly"]["events_analyzed"] == 0


class TestDryRun:
    async def test_test_rules_has_no_side_effects(self, store, transport, build_engine):
        engine = await build_engine(_rate_rule(), _pattern_rule(severity=["error"]))
        event = make_event(severity="error")

        outcome = await engine.test_rules(event, timestamp=T0)
        again = await engine.test_rules(event, rule_ids=["errors"], timestamp=T0)

        assert outcome == {"errors": False, "watch": True}
        assert again == {"errors": False}
        assert transport.requests == []
        assert (await store.alert_statistics(T0)).total == 0
        assert engine.context.evaluator.rate_windows.timestamps("errors") == []
        assert engine.list_rules()[1].trigger_count == 0


class TestAdministration:
    async def test_rule_crud(self, build_engine):
        engine = await build_engine(_pattern_rule(severity=["error"]))

        await engine.create_rule(_pattern_rule("extra", severity=["warning"]))
        updated = await engine.update_rule("watch", {"enabled": False})
        silent = await engine.process_event(make_event(severity="error"), T0)
        deleted = await engine.delete_rule("extra")

        assert not updated.enabled
        assert silent.alerts == []
        assert deleted
        assert [r.id for r in engine.list_rules()] == ["watch"]
        assert await engine.update_rule("missing", {"enabled": True}) is None
        assert not await engine.delete_rule("missing")

    async def test_update_clears_rate_window(self, build_engine):
        engine = await build_engine(_rate_rule())
        for i in range(4):
            await engine.process_event(make_event(severity="error"), T0 + timedelta(seconds=i))

        await engine.update_rule("errors", {"description": "tuned"})
        result = await engine.process_event(make_event(severity="error"), T0 + timedelta(seconds=5))

        assert result.alerts == []

    async def test_channel_crud(self, store, transport, build_engine):
        engine = await build_engine(_pattern_rule(severity=["error"]))

        await engine.update_channel("primary", {"enabled": False})
        [alert] = (await engine.process_event(make_event(severity="error"), T0)).alerts
        await engine.create_channel(webhook_channel("backup"))

        assert alert.notification_results["primary"].error == "Channel disabled"
        assert transport.requests == []
        assert "backup" in {c.id for c in await store.load_channels()}
        assert await engine.delete_channel("backup")
        assert "backup" not in {c.id for c in engine.list_channels()}

    async def test_alert_queries(self, build_engine):
        engine = await build_engine(_pattern_rule(severity=["error"]))
        [alert] = (await engine.process_event(make_event(severity="error"), T0)).alerts

        acked = await engine.acknowledge_alert(alert.alert_id, acknowledged_by="alice")
        stats = await engine.get_alert_statistics(T0)
        history = await engine.get_alert_history()

        assert acked.status == AlertStatus.ACKNOWLEDGED
        assert stats.acknowledged == 1
        assert [a.alert_id for a in history] == [alert.alert_id]


class TestBackgroundJobs:
    async def test_update_baselines(self, store, history_events, build_engine):
        engine = await build_engine()
        for event in history_events:
            await store.record_event(event)

        patterns = await engine.update_baselines(T0)

        assert len(patterns) == 25

    async def test_training_without_data_is_skipped(self, build_engine):
        engine = await build_engine(anomaly_enabled=True)

        assert await engine.train_model(T0) is None
        assert engine.status()["training"]["active_model"] is None

    async def test_anomaly_feedback(self, build_engine):
        engine = await build_engine(anomaly_enabled=True)
        [detection] = (await engine.process_event(make_event(source="edge-1"), T0)).anomalies

        flagged = await engine.mark_false_positive(detection.id, resolved_by="alice")
        stats = await engine.get_anomaly_statistics(T0)

        assert flagged.false_positive
        assert stats.false_positives == 1


class TestShutdown:
    async def test_owned_transport_is_closed(self, store, monkeypatch):
        transport = FakeTransport()
        transport.close = AsyncMock()
        monkeypatch.setattr(engine_module, "create_transport", lambda **kwargs: transport)
        engine = create_engine(store, make_config())
        await engine.initialize()

        await engine.shutdown()

        transport.close.assert_awaited_once()
        assert not engine.status()["initialized"]

    async def test_injected_transport_is_left_open(self, store):
        transport = FakeTransport()
        transport.close = AsyncMock()
        engine = create_engine(store, make_config(), transport=transport)
        await engine.initialize()

        await engine.shutdown()

        transport.close.assert_not_awaited()

    async def test_independent_engines(self, transport):
        first = create_engine(InMemoryAlertStore(), make_config([_rate_rule()]), transport=transport)
        second = create_engine(InMemoryAlertStore(), make_config([_rate_rule()]), transport=transport)
        await first.initialize()
        await second.initialize()

        for i in range(4):
            await first.process_event(make_event(severity="error"), T0 + timedelta(seconds=i))
        result = await second.process_event(make_event(severity="error"), T0 + timedelta(seconds=5))

        assert result.alerts == []
        await first.shutdown()
        await second.shutdown()
