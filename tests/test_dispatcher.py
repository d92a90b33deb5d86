"""Tests for channel variants and concurrent notification fan-out."""

from datetime import timedelta

import pytest
from conftest import T0, FakeTransport, hook_url, make_event, webhook_channel

from sentinel.detection.channels import (
    EmailRequest,
    HttpRequest,
    SlackChannel,
    default_channel_handlers,
    render_message,
)
from sentinel.detection.dispatcher import ChannelDispatcher
from sentinel.detection.registry import ChannelRegistry
from sentinel.errors import ConfigurationError
from sentinel.models.alerts import Alert, AlertSeverity
from sentinel.models.channels import ChannelType, NotificationChannelConfig


def _alert(**overrides) -> Alert:
    data = dict(
        rule_id="default_3",
        rule_name="Critical System Alert",
        severity=AlertSeverity.CRITICAL,
        triggered_at=T0,
        event=make_event("database offline", severity="critical", source="db-1"),
        channels=["a", "b"],
    )
    data.update(overrides)
    return Alert(**data)


async def _registry(store, *channels) -> ChannelRegistry:
    registry = ChannelRegistry(store)
    await registry.load(seed_channels=list(channels))
    return registry


class TestRenderMessage:
    def test_fields(self):
        message = render_message(_alert())

        assert message.title == "🚨 Critical System Alert"
        assert message.description == "database offline"
        assert message.severity == "critical"
        assert message.source == "db-1"
        assert message.device == "unknown"

    def test_overrides(self):
        message = render_message(_alert(), title="ESCALATION", description="still down")

        assert message.title == "ESCALATION"
        assert message.description == "still down"


class TestChannelVariants:
    """Request building per channel type."""

    def test_every_channel_type_has_a_handler(self):
        assert set(default_channel_handlers()) == set(ChannelType)

    def test_slack_posts_to_webhook(self):
        channel = NotificationChannelConfig(
            id="slack",
            name="Slack",
            type=ChannelType.SLACK,
            config={"webhook_url": "https://hooks.slack.com/x", "channel": "#ops"},
        )

        request = SlackChannel().build_request(channel, render_message(_alert()))

        assert isinstance(request, HttpRequest)
        assert request.url == "https://hooks.slack.com/x"
        assert request.json_body["channel"] == "#ops"

    def test_missing_config_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SlackChannel().validate_config({})

    def test_email_request(self):
        handler = default_channel_handlers()[ChannelType.EMAIL]
        channel = NotificationChannelConfig(
            id="mail",
            name="Mail",
            type=ChannelType.EMAIL,
            config={"from": "s@example.com", "to": "a@example.com, b@example.com"},
        )

        request = handler.build_request(channel, render_message(_alert()))

        assert isinstance(request, EmailRequest)
        assert request.recipients == ["a@example.com", "b@example.com"]
        assert request.subject == "[ALERT] 🚨 Critical System Alert - CRITICAL"
        assert "database offline" in request.text

    def test_sms_body_starts_with_title(self):
        handler = default_channel_handlers()[ChannelType.SMS]
        channel = NotificationChannelConfig(
            id="sms",
            name="SMS",
            type=ChannelType.SMS,
            config={"account_sid": "AC1", "auth_token": "t", "from": "+1555", "to": "+1666"},
        )

        request = handler.build_request(channel, render_message(_alert()))

        assert request.url.endswith("/Accounts/AC1/Messages.json")
        body = request.form["Body"]
        assert body.startswith("🚨 Critical System Alert\n")
        assert body.count("🚨") == 1


class TestChannelDispatcher:
    """Fan-out outcomes."""

    async def test_fans_out_to_every_channel(self, store, transport):
        registry = await _registry(store, webhook_channel("a"), webhook_channel("b"))
        dispatcher = ChannelDispatcher(registry, transport)

        results = await dispatcher.dispatch(["a", "b", "a"], render_message(_alert()), T0)

        assert set(results) == {"a", "b"}
        assert all(r.success for r in results.values())
        assert sorted(transport.urls()) == [hook_url("a"), hook_url("b")]

    async def test_failure_is_isolated(self, store):
        transport = FakeTransport(fail_urls=[hook_url("a")])
        registry = await _registry(store, webhook_channel("a"), webhook_channel("b"))
        dispatcher = ChannelDispatcher(registry, transport)

        results = await dispatcher.dispatch(["a", "b"], render_message(_alert()), T0)

        assert not results["a"].success
        assert "HTTP 500" in results["a"].error
        assert results["b"].success
        assert registry.get("a").failure_count == 1
        assert registry.get("b").usage_count == 1

    async def test_unknown_and_disabled_channels(self, store, transport):
        registry = await _registry(store, webhook_channel("off", enabled=False))
        dispatcher = ChannelDispatcher(registry, transport)

        results = await dispatcher.dispatch(["ghost", "off"], render_message(_alert()), T0)

        assert results["ghost"].error == "Channel not found"
        assert results["off"].error == "Channel disabled"
        assert transport.requests == []

    async def test_rate_limit(self, store, transport):
        registry = await _registry(store, webhook_channel("a", rate_limit_seconds=60))
        dispatcher = ChannelDispatcher(registry, transport)
        message = render_message(_alert())

        first = await dispatcher.send("a", message, T0)
        second = await dispatcher.send("a", message, T0 + timedelta(seconds=30))
        third = await dispatcher.send("a", message, T0 + timedelta(seconds=60))

        assert first.success
        assert second.rate_limited and not second.success
        assert third.success
        assert len(transport.requests) == 2

    async def test_send_timeout(self, store):
        transport = FakeTransport(delay=0.5)
        registry = await _registry(store, webhook_channel("slow"))
        dispatcher = ChannelDispatcher(registry, transport, send_timeout_seconds=0.05)

        result = await dispatcher.send("slow", render_message(_alert()), T0)

        assert not result.success
        assert "timed out" in result.error

    async def test_incomplete_config_fails_without_sending(self, store, transport):
        broken = NotificationChannelConfig(
            id="broken", name="Broken", type=ChannelType.WEBHOOK, config={}
        )
        registry = await _registry(store, broken)
        dispatcher = ChannelDispatcher(registry, transport)

        result = await dispatcher.send("broken", render_message(_alert()), T0)

        assert not result.success
        assert "missing config" in result.error
        assert transport.requests == []
