"""
Tests for the topic and message probes against the fake broker and a wire-level MQTT 5 broker.
"""
import pytest

from conftest import FakeBroker, WireBroker, make_config, make_context
from mqtt_security_scanner.exceptions import ConfigurationError
from mqtt_security_scanner.models import RawAttempt
from mqtt_security_scanner.probes import ProbeContext
from mqtt_security_scanner.probes.message_probes import (
    message_deny_topic, message_payload_length, topic_length, topic_level,
)

TOPIC_FILTER_INVALID = 0x8F
TOPIC_NAME_INVALID = 0x90


class TestDenyTopic:

    @pytest.mark.asyncio
    async def test_passes_when_every_subscribe_is_refused(self, ctx):
        result = await message_deny_topic(ctx)

        assert result.name == "MQTT Message Deny Topic"
        assert result.passed, result.messages

    @pytest.mark.asyncio
    async def test_uses_a_fresh_connection_per_topic(self, ctx, config):
        await message_deny_topic(ctx)

        assert len(ctx.clients.handles) == len(config.broker.deny_topics)
        assert len({handle.client_id for handle in ctx.clients.handles}) == len(config.broker.deny_topics)

    @pytest.mark.asyncio
    async def test_names_each_topic_that_is_not_denied(self, config):
        ctx = make_context(config, FakeBroker(deny_topics=frozenset({"$SYS/#"})))

        result = await message_deny_topic(ctx)

        assert not result.passed
        assert result.messages == ["MQTT deny topic admin/# does not work"]

    @pytest.mark.asyncio
    async def test_no_denied_topics_passes(self, broker):
        ctx = make_context(make_config(broker={"deny_topics": []}), broker)

        assert (await message_deny_topic(ctx)).passed

    @pytest.mark.asyncio
    async def test_connect_failure_is_reported(self, config):
        refused = RawAttempt(reason_code=0x87, reason="Not authorized")
        ctx = make_context(config, FakeBroker(connect_override=refused))

        result = await message_deny_topic(ctx)

        assert not result.passed
        assert result.messages[0] == "MQTT message deny topic connect failed (rejected_auth)"


class TestTopicLevel:

    @pytest.mark.asyncio
    async def test_passes_when_broker_drops_connection(self, ctx):
        result = await topic_level(ctx)

        assert result.name == "MQTT Topic Level"
        assert result.passed, result.messages

    @pytest.mark.asyncio
    async def test_fails_when_deep_topic_is_accepted(self, config):
        ctx = make_context(config, FakeBroker(topic_level_limit=None))

        result = await topic_level(ctx)

        assert result.messages == ["MQTT topic level limit do not work"]

    @pytest.mark.asyncio
    async def test_passes_when_publish_is_refused_with_reason_code(self, config):
        ctx = make_context(config, FakeBroker(violation_code=TOPIC_NAME_INVALID))

        result = await topic_level(ctx)

        assert result.passed, result.messages

    @pytest.mark.asyncio
    async def test_mqtt5_broker_refusing_deep_topic(self):
        async with WireBroker(ack=TOPIC_NAME_INVALID) as port:
            config = make_config(broker={"mqtt_port": port, "mqtt_version": "5"}, settings={"ack_timeout": 2})
            result = await topic_level(ProbeContext.from_config(config))

        assert result.passed, result.messages

    @pytest.mark.asyncio
    async def test_mqtt5_broker_accepting_deep_topic(self):
        async with WireBroker(ack=0) as port:
            config = make_config(broker={"mqtt_port": port, "mqtt_version": "5"}, settings={"ack_timeout": 2})
            result = await topic_level(ProbeContext.from_config(config))

        assert result.messages == ["MQTT topic level limit do not work"]


class TestTopicLength:

    @pytest.mark.asyncio
    async def test_passes_when_broker_drops_connection(self, ctx):
        result = await topic_length(ctx)

        assert result.name == "MQTT Topic Length"
        assert result.passed, result.messages

    @pytest.mark.asyncio
    async def test_fails_when_long_topic_is_accepted(self, config):
        ctx = make_context(config, FakeBroker(topic_len_limit=None))

        result = await topic_length(ctx)

        assert result.messages == ["MQTT topic length limit do not work"]

    @pytest.mark.asyncio
    async def test_passes_when_subscribe_is_refused_with_reason_code(self, config):
        ctx = make_context(config, FakeBroker(violation_code=TOPIC_FILTER_INVALID))

        result = await topic_length(ctx)

        assert result.passed, result.messages

    @pytest.mark.asyncio
    async def test_unexpected_refusal_is_reported(self, config):
        ctx = make_context(config, FakeBroker(violation_code=0x87))

        result = await topic_length(ctx)

        assert result.messages == ["MQTT topic length limit do not work, broker answered rejected_auth"]

    @pytest.mark.asyncio
    async def test_unencodable_topic_is_configuration_error(self, broker):
        ctx = make_context(make_config(limit={"topic_len": 70000}), broker)

        with pytest.raises(ConfigurationError):
            await topic_length(ctx)


class TestPayloadLength:

    @pytest.mark.asyncio
    async def test_passes_when_publish_fails(self, ctx):
        result = await message_payload_length(ctx)

        assert result.name == "MQTT Message Payload Length"
        assert result.passed, result.messages

    @pytest.mark.asyncio
    async def test_fails_when_large_payload_is_accepted(self, config):
        ctx = make_context(config, FakeBroker(payload_limit=None))

        result = await message_payload_length(ctx)

        assert result.messages == ["MQTT message payload length limit do not work"]

    @pytest.mark.asyncio
    async def test_payload_length_is_in_bytes(self, config):
        broker = FakeBroker(payload_limit=config.limit.payload_len + config.settings.payload_overshoot)
        ctx = make_context(config, broker)

        result = await message_payload_length(ctx)

        assert not result.passed
