"""
Tests for the MQTT client factory.
"""
import asyncio

import paho.mqtt.client as mqtt
import pytest

from conftest import WireBroker, make_config
from mqtt_security_scanner.classifier import classify
from mqtt_security_scanner.exceptions import ConfigurationError, InfrastructureError
from mqtt_security_scanner.models import Outcome, Transport, TransportError
from mqtt_security_scanner.mqtt_client import ClientFactory, random_string, random_topic


@pytest.fixture
def factory():
    config = make_config()
    return ClientFactory(config.broker, config.settings)


class TestHelpers:

    def test_random_string_length(self):
        assert len(random_string(300)) == 300
        assert random_string(0) == ""

    def test_random_topic_levels(self):
        topic = random_topic(7)

        assert len(topic.split("/")) == 7
        assert all(len(level) == 5 for level in topic.split("/"))


class TestClientFactory:

    def test_client_ids_are_unique(self, factory):
        ids = {factory.client_id("probe") for _ in range(2000)}

        assert len(ids) == 2000
        assert all(client_id.startswith("probe-") for client_id in ids)

    def test_configured_credentials_by_default(self, factory):
        handle = factory.new_client()

        assert handle.username == "admin"
        assert handle.password == "public"
        assert handle.port == 1883
        assert handle.transport is Transport.TCP

    def test_empty_credentials_are_sent_as_empty(self, factory):
        handle = factory.new_client(username="", password="")

        assert handle.username == ""
        assert handle.password == ""

    def test_explicit_client_id_is_kept(self, factory):
        assert factory.new_client(client_id="fixed").client_id == "fixed"

    def test_transport_selects_port(self, factory):
        assert factory.new_client(Transport.TLS).port == 8883
        assert factory.new_client(Transport.WS).port == 8083
        assert factory.new_client(Transport.WSS).port == 8084

    def test_protocol_version(self):
        config = make_config(broker={"mqtt_version": "5"})

        assert ClientFactory(config.broker).protocol == mqtt.MQTTv5

    def test_unsupported_protocol_version(self):
        config = make_config(broker={"mqtt_version": "4"})

        with pytest.raises(ConfigurationError) as exc_info:
            ClientFactory(config.broker)
        assert exc_info.value.field == "broker.mqtt_version"


class TestHandle:

    @pytest.mark.asyncio
    async def test_refused_connection_is_infrastructure_error(self):
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        config = make_config(broker={"mqtt_port": port})
        handle = ClientFactory(config.broker, config.settings).new_client()

        with pytest.raises(InfrastructureError):
            await handle.connect()
        await handle.close()
        await handle.close()

    @pytest.mark.asyncio
    async def test_handle_is_single_use(self):
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        config = make_config(broker={"mqtt_port": port})
        handle = ClientFactory(config.broker, config.settings).new_client()

        with pytest.raises(InfrastructureError):
            await handle.connect()
        with pytest.raises(RuntimeError):
            await handle.connect()
        await handle.close()


class TestWireProtocol:
    """The paho bridge against a broker speaking MQTT on a real socket."""

    @staticmethod
    def _factory(port: int, version: str = "3.1.1") -> ClientFactory:
        config = make_config(broker={"mqtt_port": port, "mqtt_version": version},
                             settings={"ack_timeout": 2})
        return ClientFactory(config.broker, config.settings)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("return_code,expected", [
        (0, Outcome.ACCEPTED),
        (2, Outcome.REJECTED_IDENTIFIER),
        (3, Outcome.REJECTED_LIMIT),
        (4, Outcome.REJECTED_AUTH),
        (5, Outcome.REJECTED_AUTH),
    ])
    async def test_connack_return_codes(self, return_code, expected):
        async with WireBroker(connack=return_code) as port:
            handle = self._factory(port).new_client()
            try:
                attempt = await handle.connect()
            finally:
                await handle.close()

        assert classify(attempt) is expected

    @pytest.mark.asyncio
    async def test_mqtt5_connack_reason_code(self):
        async with WireBroker(connack=0x97) as port:
            handle = self._factory(port, "5").new_client()
            try:
                attempt = await handle.connect()
            finally:
                await handle.close()

        assert attempt.reason_code == 0x97
        assert classify(attempt) is Outcome.REJECTED_LIMIT

    @pytest.mark.asyncio
    async def test_dropped_session_on_publish_is_transport_closed(self):
        async with WireBroker() as port:
            handle = self._factory(port).new_client()
            try:
                assert classify(await handle.connect()) is Outcome.ACCEPTED
                attempt = await handle.publish("a/b", b"payload")
            finally:
                await handle.close()

        assert attempt.transport_error is TransportError.CLOSED
        assert classify(attempt) is Outcome.TRANSPORT_CLOSED

    @pytest.mark.asyncio
    async def test_puback_is_accepted(self):
        async with WireBroker(ack=0) as port:
            handle = self._factory(port).new_client()
            try:
                await handle.connect()
                attempt = await handle.publish("a/b", b"payload")
            finally:
                await handle.close()

        assert classify(attempt) is Outcome.ACCEPTED

    @pytest.mark.asyncio
    async def test_suback_failure_is_rejected(self):
        async with WireBroker(ack=0x80) as port:
            handle = self._factory(port).new_client()
            try:
                await handle.connect()
                attempt = await handle.subscribe("$SYS/#")
            finally:
                await handle.close()

        assert classify(attempt) is Outcome.REJECTED_AUTH

    @pytest.mark.asyncio
    async def test_mqtt5_puback_topic_name_invalid(self):
        async with WireBroker(ack=0x90) as port:
            handle = self._factory(port, "5").new_client()
            try:
                await handle.connect()
                attempt = await handle.publish("a/b/c", b"payload")
            finally:
                await handle.close()

        assert attempt.reason_code == 0x90
        assert classify(attempt) is Outcome.REJECTED_LIMIT

    @pytest.mark.asyncio
    async def test_close_sends_disconnect(self):
        broker = WireBroker()
        port = await broker.start()
        try:
            handle = self._factory(port).new_client()
            await handle.connect()
            await handle.close()
            for _ in range(50):
                if 0xE0 in broker.packets:
                    break
                await asyncio.sleep(0.02)
        finally:
            await broker.stop()

        assert broker.packets == [0x10, 0xE0]
