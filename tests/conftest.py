"""
Pytest configuration and shared fixtures for mqtt-security-scanner tests.

FakeBroker enforces the same policies a hardened broker would (authentication,
length limits, flapping blacklist, connection capacity, denied topics) so the
probes can be exercised without a network.
"""
import asyncio
import os
import sys
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Set

import pytest

# Add the src directory to the path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from mqtt_security_scanner.exceptions import InfrastructureError  # noqa: E402
from mqtt_security_scanner.models import (  # noqa: E402
    AuditConfig, BrokerTarget, PolicyLimits, ProbeSettings, RawAttempt, Transport, TransportError,
)
from mqtt_security_scanner.probes import ProbeContext  # noqa: E402
from mqtt_security_scanner.scanner import PortScanner  # noqa: E402

USERNAME = "admin"
PASSWORD = "public"

BAD_CREDENTIALS = 0x86
CLIENT_ID_NOT_VALID = 0x85
BANNED = 0x8A
NOT_AUTHORIZED = 0x87
QUOTA_EXCEEDED = 0x97


@dataclass
class FakeBroker:
    """In-memory broker; a limit of None disables that policy."""
    username: str = USERNAME
    password: str = PASSWORD
    enforce_auth: bool = True
    client_id_limit: Optional[int] = 64
    credential_limit: Optional[int] = 64
    flap_limit: Optional[int] = 5
    capacity: Optional[int] = 8
    deny_topics: FrozenSet[str] = frozenset({"$SYS/#", "admin/#"})
    topic_level_limit: Optional[int] = 8
    topic_len_limit: Optional[int] = 128
    payload_limit: Optional[int] = 256

    connect_override: Optional[RawAttempt] = None
    # the first N connects fail before reaching the broker (refused, fd exhaustion)
    failing_connects: int = 0
    # answer topic violations with this reason code instead of dropping the connection
    violation_code: Optional[int] = None

    open: Set[str] = field(default_factory=set)
    connects: Dict[str, int] = field(default_factory=dict)
    attempts: List[str] = field(default_factory=list)

    def connect(self, handle: "FakeHandle") -> RawAttempt:
        self.attempts.append(handle.client_id)
        if self.failing_connects > 0:
            self.failing_connects -= 1
            raise InfrastructureError("cannot connect to tcp://127.0.0.1:1883: [Errno 24] Too many open files")
        if self.connect_override is not None:
            return self.connect_override
        if self.client_id_limit is not None and len(handle.client_id) > self.client_id_limit:
            return RawAttempt(reason_code=CLIENT_ID_NOT_VALID, reason="Client identifier not valid")
        if self.credential_limit is not None and (len(handle.username) > self.credential_limit
                                                  or len(handle.password) > self.credential_limit):
            return RawAttempt(transport_error=TransportError.CLOSED)
        if self.enforce_auth and (handle.username, handle.password) != (self.username, self.password):
            return RawAttempt(reason_code=BAD_CREDENTIALS, reason="Bad user name or password")
        if self.flap_limit is not None and self.connects.get(handle.client_id, 0) >= self.flap_limit:
            return RawAttempt(reason_code=BANNED, reason="Banned")
        if self.capacity is not None and len(self.open) >= self.capacity:
            return RawAttempt(reason_code=QUOTA_EXCEEDED, reason="Quota exceeded")

        self.connects[handle.client_id] = self.connects.get(handle.client_id, 0) + 1
        self.open.add(handle.key)
        handle.connected = True
        return RawAttempt(reason_code=0, reason="Success")

    def drop(self, handle: "FakeHandle") -> RawAttempt:
        self.open.discard(handle.key)
        handle.connected = False
        return RawAttempt(transport_error=TransportError.CLOSED)

    def refuse(self, handle: "FakeHandle") -> RawAttempt:
        if self.violation_code is not None:
            return RawAttempt(reason_code=self.violation_code, reason="Topic name invalid")
        return self.drop(handle)

    def publish(self, handle: "FakeHandle", topic: str, payload: bytes) -> RawAttempt:
        if not handle.connected:
            return RawAttempt(transport_error=TransportError.CLOSED)
        if self.topic_level_limit is not None and len(topic.split("/")) > self.topic_level_limit:
            return self.refuse(handle)
        if self.payload_limit is not None and len(payload) > self.payload_limit:
            return self.drop(handle)
        return RawAttempt(reason_code=0, reason="Success")

    def subscribe(self, handle: "FakeHandle", topic: str) -> RawAttempt:
        if not handle.connected:
            return RawAttempt(transport_error=TransportError.CLOSED)
        if self.topic_len_limit is not None and len(topic) > self.topic_len_limit:
            return self.refuse(handle)
        if topic in self.deny_topics:
            return RawAttempt(reason_code=NOT_AUTHORIZED, reason="Not authorized")
        return RawAttempt(reason_code=1, reason="Granted QoS 1")

    def disconnect(self, handle: "FakeHandle") -> None:
        self.open.discard(handle.key)
        handle.connected = False


class FakeHandle:
    _serial = 0

    def __init__(self, broker: FakeBroker, client_id: str, username: str, password: str):
        FakeHandle._serial += 1
        self.key = f"{client_id}#{FakeHandle._serial}"
        self.broker = broker
        self.client_id = client_id
        self.username = username
        self.password = password
        self.connected = False
        self.attempted = False
        self.closed = False

    async def connect(self) -> RawAttempt:
        assert not self.attempted, "handle reused after its connection attempt"
        self.attempted = True
        return self.broker.connect(self)

    async def publish(self, topic: str, payload: bytes) -> RawAttempt:
        return self.broker.publish(self, topic, payload)

    async def subscribe(self, topic: str) -> RawAttempt:
        return self.broker.subscribe(self, topic)

    async def close(self) -> None:
        self.closed = True
        self.broker.disconnect(self)


class FakeClientFactory:
    """Drop-in replacement for ClientFactory backed by a FakeBroker."""

    def __init__(self, broker: FakeBroker, target: BrokerTarget):
        self.broker = broker
        self.target = target
        self.handles: List[FakeHandle] = []
        self._serial = 0

    def client_id(self, prefix: str = "mqtt-security-scanner") -> str:
        self._serial += 1
        return f"{prefix}-{self._serial:08d}"

    def new_client(self, transport=Transport.TCP, client_id=None, username=None, password=None,
                   prefix="mqtt-security-scanner") -> FakeHandle:
        handle = FakeHandle(
            self.broker,
            client_id if client_id is not None else self.client_id(prefix),
            self.target.username if username is None else username,
            self.target.password if password is None else password,
        )
        self.handles.append(handle)
        return handle


class WireBroker:
    """
    Minimal MQTT speaker on a real socket, for exercising the paho bridge.

    Answers CONNECT with ``connack`` (a 3.1.1 return code or an MQTT 5 reason
    code, following the protocol level the client announced). A PUBLISH or
    SUBSCRIBE is answered with ``ack`` when set, otherwise the connection is
    dropped.
    """

    def __init__(self, connack: int = 0, ack: Optional[int] = None):
        self.connack = connack
        self.ack = ack
        self.packets: List[int] = []
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> int:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self._server.close()
        await self._server.wait_closed()

    async def __aenter__(self) -> int:
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    @staticmethod
    async def _read_packet(reader: asyncio.StreamReader):
        header = (await reader.readexactly(1))[0]
        length, shift = 0, 0
        while True:
            byte = (await reader.readexactly(1))[0]
            length |= (byte & 0x7F) << shift
            if not byte & 0x80:
                break
            shift += 7
        return header & 0xF0, await reader.readexactly(length)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        v5 = False
        try:
            while True:
                kind, body = await self._read_packet(reader)
                self.packets.append(kind)
                if kind == 0x10:
                    # protocol name is a 2-byte length plus "MQTT", then the level
                    v5 = body[6] == 5
                    writer.write(bytes([0x20, 3, 0, self.connack, 0]) if v5 else bytes([0x20, 2, 0, self.connack]))
                    await writer.drain()
                    if self.connack:
                        break
                elif kind in (0x30, 0x80):
                    if self.ack is None:
                        break
                    if kind == 0x30:
                        topic_len = int.from_bytes(body[:2], "big")
                        mid = body[2 + topic_len:4 + topic_len]
                        packet = bytes([0x40, 4]) + mid + bytes([self.ack, 0]) if v5 else bytes([0x40, 2]) + mid
                    else:
                        mid = body[:2]
                        packet = bytes([0x90, 4]) + mid + bytes([0, self.ack]) if v5 else bytes([0x90, 3]) + mid + bytes([self.ack])
                    writer.write(packet)
                    await writer.drain()
                elif kind == 0xC0:
                    writer.write(bytes([0xD0, 0]))
                    await writer.drain()
                elif kind == 0xE0:
                    break
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


async def closed_connector(host: str, port: int, timeout: float) -> bool:
    return False


def make_config(broker: Optional[dict] = None, limit: Optional[dict] = None,
                settings: Optional[dict] = None, hosts: Optional[list] = None) -> AuditConfig:
    broker_fields = {
        "host": "127.0.0.1",
        "username": USERNAME,
        "password": PASSWORD,
        "deny_topics": ["$SYS/#", "admin/#"],
    }
    broker_fields.update(broker or {})
    limit_fields = {
        "client_id_len": 64,
        "username_len": 64,
        "password_len": 64,
        "topic_level": 8,
        "topic_len": 128,
        "payload_len": 256,
        "connection": 8,
        "flapping": 5,
    }
    limit_fields.update(limit or {})
    settings_fields = {
        "client_id_overshoot": 10,
        "payload_overshoot": 16,
        "flapping_overshoot": 3,
        "flapping_interval": 0,
        "connection_overshoot": 0,
        "connection_interval": 0,
        "connection_settle": 0,
        "connect_timeout": 0.5,
    }
    settings_fields.update(settings or {})
    return AuditConfig(
        broker=BrokerTarget(**broker_fields),
        hosts=hosts or [],
        limit=PolicyLimits(**limit_fields),
        settings=ProbeSettings(**settings_fields),
    )


def make_context(config: AuditConfig, broker: FakeBroker, scanner: Optional[PortScanner] = None) -> ProbeContext:
    return ProbeContext(
        config=config,
        clients=FakeClientFactory(broker, config.broker),
        scanner=scanner or PortScanner(workers=10, timeout=0.1, connector=closed_connector),
    )


@pytest.fixture
def broker():
    """A fake broker enforcing every policy."""
    return FakeBroker()


@pytest.fixture
def config():
    """A configuration whose limits match the fake broker."""
    return make_config()


@pytest.fixture
def ctx(config, broker):
    return make_context(config, broker)


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
