"""
检查项注册表

PROBES 的顺序即报告中结果的顺序。并发连接数检查会占满 Broker 的连接容量，
标记为 exclusive，在其他检查项全部结束后单独运行。
"""

from typing import List

from ..models import AuditConfig
from ..scanner import HOST_PORT_SCAN, host_port_scan
from .base import ProbeContext, ProbeSpec
from .client_probes import (
    CLIENT_AUTHENTICATION, CLIENT_CONNECTION, CLIENT_FLAPPING, CLIENT_ID_LENGTH,
    CLIENT_PASSWORD_LENGTH, CLIENT_USERNAME_LENGTH,
    client_authentication, client_connection, client_flapping, client_id_length,
    client_password_length, client_username_length,
)
from .message_probes import (
    MESSAGE_DENY_TOPIC, MESSAGE_PAYLOAD_LENGTH, TOPIC_LENGTH, TOPIC_LEVEL,
    message_deny_topic, message_payload_length, topic_length, topic_level,
)
from .protocol_probes import (
    INVALID_MQTT_MESSAGE, INVALID_WEBSOCKET_PROTOCOL, TLS_VERSION,
    invalid_mqtt_message, invalid_websocket_protocol, tls_versions,
)


def _tls_enabled(config: AuditConfig) -> bool:
    return config.broker.tls


PROBES: List[ProbeSpec] = [
    ProbeSpec(CLIENT_AUTHENTICATION, client_authentication),
    ProbeSpec(CLIENT_ID_LENGTH, client_id_length),
    ProbeSpec(CLIENT_USERNAME_LENGTH, client_username_length),
    ProbeSpec(CLIENT_PASSWORD_LENGTH, client_password_length),
    ProbeSpec(CLIENT_FLAPPING, client_flapping),
    ProbeSpec(MESSAGE_DENY_TOPIC, message_deny_topic),
    ProbeSpec(TOPIC_LEVEL, topic_level),
    ProbeSpec(TOPIC_LENGTH, topic_length),
    ProbeSpec(MESSAGE_PAYLOAD_LENGTH, message_payload_length),
    ProbeSpec(INVALID_MQTT_MESSAGE, invalid_mqtt_message),
    ProbeSpec(INVALID_WEBSOCKET_PROTOCOL, invalid_websocket_protocol),
    ProbeSpec(TLS_VERSION, tls_versions, enabled=_tls_enabled),
    ProbeSpec(HOST_PORT_SCAN, host_port_scan),
    ProbeSpec(CLIENT_CONNECTION, client_connection, exclusive=True),
]


def default_probes(config: AuditConfig) -> List[ProbeSpec]:
    """根据配置筛选需要运行的检查项"""
    return [spec for spec in PROBES if spec.enabled(config)]


__all__ = [
    "PROBES",
    "ProbeContext",
    "ProbeSpec",
    "default_probes",
]
