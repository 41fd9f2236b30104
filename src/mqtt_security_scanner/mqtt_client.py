"""
MQTT 客户端工厂
为每次探测构建独立的客户端身份（唯一的客户端 ID、认证信息、传输方式）

paho-mqtt 的网络循环运行在独立线程中，这里通过 threading.Condition 收集回调结果，
并用 asyncio.to_thread 把阻塞等待桥接到事件循环。
"""

import asyncio
import random
import socket
import ssl
import string
import threading
from typing import Any, Dict, Optional, Set

import paho.mqtt.client as mqtt

from .exceptions import ConfigurationError, InfrastructureError
from .logger_config import logger
from .models import BrokerTarget, ProbeSettings, RawAttempt, Transport, TransportError

CHARSET = string.ascii_letters + string.digits
DEFAULT_CLIENT_PREFIX = "mqtt-security-scanner"

# MQTT 字符串字段（主题、客户端 ID、用户名）的最大编码长度
MQTT_MAX_STRING_LEN = 65535

MQTT_VERSIONS = {
    "3.1": mqtt.MQTTv31,
    "3.1.1": mqtt.MQTTv311,
    "5": mqtt.MQTTv5,
    "5.0": mqtt.MQTTv5,
}

# 会话已断开时 paho 返回的错误码
_LOST_RCS = (mqtt.MQTT_ERR_NO_CONN, mqtt.MQTT_ERR_CONN_LOST)


def random_string(length: int) -> str:
    """生成指定长度的随机字符串"""
    return "".join(random.choices(CHARSET, k=length))


def random_topic(levels: int) -> str:
    """生成指定层级数的随机主题"""
    return "/".join(random_string(5) for _ in range(levels))


def _code_of(reason_code: Any) -> int:
    return int(getattr(reason_code, "value", reason_code))


class MQTTClientHandle:
    """
    单次使用的 MQTT 客户端句柄

    connect() 只能调用一次；连接尝试结束后（无论成功与否）句柄不可复用，
    需要新的连接时应从 ClientFactory 重新获取。
    """

    def __init__(self,
                 host: str,
                 port: int,
                 transport: Transport,
                 client_id: str,
                 username: str,
                 password: str,
                 settings: ProbeSettings,
                 ws_path: str = "/mqtt",
                 protocol: int = mqtt.MQTTv311):
        self.host = host
        self.port = port
        self.transport = transport
        self.client_id = client_id
        self.username = username
        self.password = password
        self.settings = settings
        self.ws_path = ws_path
        self.protocol = protocol

        self._cond = threading.Condition()
        self._connack: Any = None
        self._lost = False
        self._acks: Dict[int, Any] = {}

        self._attempted = False
        self._connected = False
        self._loop_started = False
        self._closed = False

        self._client = self._build_client()

    def __repr__(self) -> str:
        return f"MQTTClientHandle(address='{self.address}', client_id='{self.client_id[:32]}')"

    @property
    def address(self) -> str:
        return f"{self.transport.value}://{self.host}:{self.port}"

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=self.protocol,
            transport="websockets" if self.transport.is_websocket else "tcp",
            reconnect_on_failure=False,
        )
        if self.username or self.password:
            client.username_pw_set(self.username, self.password)
        if self.transport.is_secure:
            client.tls_set(cert_reqs=ssl.CERT_NONE)
            client.tls_insecure_set(True)
        if self.transport.is_websocket:
            client.ws_set_options(path=self.ws_path)
        client.connect_timeout = self.settings.connect_timeout

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_publish = self._on_publish
        client.on_subscribe = self._on_subscribe
        return client

    # ==================== paho 回调（网络线程） ====================

    def _on_connect(self, client, userdata, connect_flags, reason_code, properties):
        with self._cond:
            self._connack = reason_code
            self._cond.notify_all()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        with self._cond:
            self._lost = True
            self._cond.notify_all()

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        with self._cond:
            self._acks[mid] = reason_code
            self._cond.notify_all()

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        with self._cond:
            # 空的 SUBACK 视为失败
            self._acks[mid] = reason_code_list[0] if reason_code_list else 0x80
            self._cond.notify_all()

    # ==================== 阻塞实现（工作线程） ====================

    def _connect(self) -> RawAttempt:
        if self._attempted:
            raise RuntimeError(f"{self!r} has already attempted a connection")
        self._attempted = True

        try:
            self._client.connect(self.host, self.port, keepalive=self.settings.keepalive)
        except BrokenPipeError:
            return RawAttempt(transport_error=TransportError.CLOSED)
        except ConnectionResetError:
            return RawAttempt(transport_error=TransportError.RESET)
        except socket.gaierror as e:
            raise InfrastructureError(f"cannot resolve broker host {self.host}: {e}") from e
        except OSError as e:
            raise InfrastructureError(f"cannot connect to {self.address}: {e}") from e

        self._client.loop_start()
        self._loop_started = True

        with self._cond:
            self._cond.wait_for(lambda: self._connack is not None or self._lost,
                                timeout=self.settings.connect_timeout)
            connack, lost = self._connack, self._lost

        if connack is not None:
            code = _code_of(connack)
            self._connected = code < 0x80 and not lost
            attempt = RawAttempt(reason_code=code, reason=str(connack))
        elif lost:
            attempt = RawAttempt(transport_error=TransportError.CLOSED)
        else:
            attempt = RawAttempt(timed_out=True)

        logger.debug(f"CONNECT {self.address} client_id={self.client_id[:32]} -> {attempt.describe()}")
        return attempt

    def _wait_ack(self, mid: int) -> RawAttempt:
        with self._cond:
            self._cond.wait_for(lambda: mid in self._acks or self._lost,
                                timeout=self.settings.ack_timeout)
            acked = mid in self._acks
            ack = self._acks.pop(mid, None)
            lost = self._lost

        if acked:
            return RawAttempt(reason_code=_code_of(ack), reason=str(ack))
        if lost:
            return RawAttempt(transport_error=TransportError.CLOSED)
        return RawAttempt(timed_out=True)

    def _publish(self, topic: str, payload: bytes) -> RawAttempt:
        try:
            info = self._client.publish(topic, payload, qos=1)
        except ValueError as e:
            raise InfrastructureError(f"MQTT client refused to publish to topic: {e}") from e

        if info.rc in _LOST_RCS:
            return RawAttempt(transport_error=TransportError.CLOSED)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise InfrastructureError(f"publish failed on {self.address}: {mqtt.error_string(info.rc)}")

        attempt = self._wait_ack(info.mid)
        logger.debug(f"PUBLISH {self.address} topic_len={len(topic)} payload_len={len(payload)} -> {attempt.describe()}")
        return attempt

    def _subscribe(self, topic: str) -> RawAttempt:
        try:
            rc, mid = self._client.subscribe(topic, qos=1)
        except ValueError as e:
            raise InfrastructureError(f"MQTT client refused to subscribe to topic: {e}") from e

        if rc in _LOST_RCS:
            return RawAttempt(transport_error=TransportError.CLOSED)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise InfrastructureError(f"subscribe failed on {self.address}: {mqtt.error_string(rc)}")

        attempt = self._wait_ack(mid)
        logger.debug(f"SUBSCRIBE {self.address} topic={topic[:64]!r} -> {attempt.describe()}")
        return attempt

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._connected and not self._lost:
                self._client.disconnect()
        finally:
            if self._loop_started:
                self._client.loop_stop()

    # ==================== 异步接口 ====================

    async def connect(self) -> RawAttempt:
        """发起连接并等待 CONNACK，超时由 connect_timeout 控制"""
        return await asyncio.to_thread(self._connect)

    async def publish(self, topic: str, payload: bytes) -> RawAttempt:
        """以 QoS 1 发布消息并等待 PUBACK"""
        return await asyncio.to_thread(self._publish, topic, payload)

    async def subscribe(self, topic: str) -> RawAttempt:
        """以 QoS 1 订阅主题并等待 SUBACK"""
        return await asyncio.to_thread(self._subscribe, topic)

    async def close(self) -> None:
        """断开连接并停止网络循环，可重复调用"""
        await asyncio.to_thread(self._close)


class ClientFactory:
    """MQTT 客户端工厂"""

    def __init__(self, broker: BrokerTarget, settings: Optional[ProbeSettings] = None):
        self.broker = broker
        self.settings = settings or ProbeSettings()
        self._issued_ids: Set[str] = set()
        self._lock = threading.Lock()

        if broker.mqtt_version not in MQTT_VERSIONS:
            raise ConfigurationError(
                "broker.mqtt_version",
                f"unsupported MQTT version {broker.mqtt_version!r}, expected one of {sorted(MQTT_VERSIONS)}"
            )
        self.protocol = MQTT_VERSIONS[broker.mqtt_version]

    def client_id(self, prefix: str = DEFAULT_CLIENT_PREFIX) -> str:
        """生成本次运行内唯一的客户端 ID"""
        with self._lock:
            while True:
                candidate = f"{prefix}-{random_string(8)}"
                if candidate not in self._issued_ids:
                    self._issued_ids.add(candidate)
                    return candidate

    def new_client(self,
                   transport: Transport = Transport.TCP,
                   client_id: Optional[str] = None,
                   username: Optional[str] = None,
                   password: Optional[str] = None,
                   prefix: str = DEFAULT_CLIENT_PREFIX) -> MQTTClientHandle:
        """
        创建新的客户端句柄，调用 connect() 之前不产生任何网络活动

        Args:
            transport: 传输方式
            client_id: 客户端 ID，为空时按 prefix 生成唯一 ID
            username: 用户名，为 None 时使用配置中的用户名
            password: 密码，为 None 时使用配置中的密码
            prefix: 生成客户端 ID 时使用的前缀

        Returns:
            MQTTClientHandle: 客户端句柄
        """
        if client_id is None:
            client_id = self.client_id(prefix)

        return MQTTClientHandle(
            host=self.broker.host,
            port=self.broker.port_for(transport),
            transport=transport,
            client_id=client_id,
            username=self.broker.username if username is None else username,
            password=self.broker.password if password is None else password,
            settings=self.settings,
            ws_path=self.broker.ws_path,
            protocol=self.protocol,
        )
