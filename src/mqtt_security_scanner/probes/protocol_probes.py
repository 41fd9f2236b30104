"""
传输层检查项
- 非 MQTT 数据：MQTT 端口和 WebSocket 端口收到非协议数据后必须直接断开连接
- TLS 版本矩阵：逐个版本以 min=max 的方式握手，验证支持/禁用的版本
"""

import asyncio
import socket
import ssl
import warnings
from typing import Dict, List, Optional, Union

from ..classifier import is_version_mismatch
from ..exceptions import ConfigurationError, InfrastructureError
from ..logger_config import logger
from ..models import CheckResult, Outcome, RawAttempt, TransportError
from .base import ProbeContext, resolve

INVALID_MQTT_MESSAGE = "Invalid MQTT Message"
INVALID_WEBSOCKET_PROTOCOL = "Invalid Websocket Protocol"
TLS_VERSION = "TLS Version"

NON_MQTT_PAYLOAD = b"Non-MQTT message"

TLS_VERSIONS: Dict[str, ssl.TLSVersion] = {
    "SSL3.0": ssl.TLSVersion.SSLv3,
    "TLS1.0": ssl.TLSVersion.TLSv1,
    "TLS1.1": ssl.TLSVersion.TLSv1_1,
    "TLS1.2": ssl.TLSVersion.TLSv1_2,
    "TLS1.3": ssl.TLSVersion.TLSv1_3,
}

# 握手报文中的版本号
TLS_VERSION_CODES: Dict[int, str] = {
    768: "SSL3.0",
    769: "TLS1.0",
    770: "TLS1.1",
    771: "TLS1.2",
    772: "TLS1.3",
}

_TLS_ALIASES = {"SSL3": "SSL3.0", "TLS1": "TLS1.0"}


async def non_mqtt_exchange(host: str, port: int, timeout: float) -> RawAttempt:
    """
    建立原始 TCP 连接，发送非 MQTT 数据并读取响应

    Args:
        host: 目标主机
        port: 目标端口
        timeout: 连接和读取的超时时间(秒)

    Returns:
        RawAttempt: 对端关闭连接为 CLOSED，收到任何数据为无原因码的成功结果
    """
    try:
        reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError) as e:
        raise InfrastructureError(f"cannot connect to {host}:{port}: {e!r}") from e

    try:
        writer.write(NON_MQTT_PAYLOAD)
        await writer.drain()
        data = await asyncio.wait_for(reader.read(1024), timeout=timeout)
    except asyncio.TimeoutError:
        return RawAttempt(timed_out=True)
    except BrokenPipeError:
        return RawAttempt(transport_error=TransportError.CLOSED)
    except ConnectionResetError:
        return RawAttempt(transport_error=TransportError.RESET)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    if not data:
        return RawAttempt(transport_error=TransportError.CLOSED)
    logger.debug(f"{host}:{port} 对非 MQTT 数据返回了 {len(data)} 字节")
    return RawAttempt()


async def _invalid_protocol(ctx: ProbeContext, name: str, port: int, label: str) -> CheckResult:
    attempt = await non_mqtt_exchange(ctx.config.broker.host, port, ctx.config.settings.connect_timeout)
    try:
        outcome = resolve(attempt, name)
    except InfrastructureError as e:
        raise InfrastructureError(f"{e.message} on port {port}", name) from e

    messages: List[str] = []
    if outcome is Outcome.TIMED_OUT:
        messages.append(f"Invalid {label} protocol connection is kept open")
    elif outcome is not Outcome.TRANSPORT_CLOSED:
        messages.append(f"Invalid {label} protocol connect successfully")
    return CheckResult.from_messages(name, messages)


async def invalid_mqtt_message(ctx: ProbeContext) -> CheckResult:
    """MQTT 端口必须拒绝非 MQTT 数据"""
    return await _invalid_protocol(ctx, INVALID_MQTT_MESSAGE, ctx.config.broker.mqtt_port, "MQTT")


async def invalid_websocket_protocol(ctx: ProbeContext) -> CheckResult:
    """WebSocket 端口必须拒绝非 MQTT 数据"""
    return await _invalid_protocol(ctx, INVALID_WEBSOCKET_PROTOCOL, ctx.config.broker.ws_port, "websocket")


def resolve_tls_version(value: Union[int, str], field: str) -> str:
    """
    将配置中的 TLS 版本（名称或版本号）解析为标准名称

    Raises:
        ConfigurationError: 无法识别的版本
    """
    if isinstance(value, int) and not isinstance(value, bool):
        if value in TLS_VERSION_CODES:
            return TLS_VERSION_CODES[value]
    elif isinstance(value, str):
        label = value.strip().upper().replace("V", "")
        label = _TLS_ALIASES.get(label, label)
        if label in TLS_VERSIONS:
            return label
    raise ConfigurationError(field, f"unknown TLS version {value!r}, expected one of {list(TLS_VERSIONS)}",
                             TLS_VERSION)


def build_tls_context(label: str) -> ssl.SSLContext:
    """构建只允许单个协议版本、不校验证书的客户端上下文"""
    version = TLS_VERSIONS[label]
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    if version < ssl.TLSVersion.TLSv1_2:
        # 旧版本依赖的密码套件在默认安全级别下被禁用
        context.set_ciphers("ALL:@SECLEVEL=0")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        context.minimum_version = version
        context.maximum_version = version
    return context


def _handshake(host: str, port: int, context: ssl.SSLContext, timeout: float) -> Optional[BaseException]:
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise InfrastructureError(f"cannot connect to {host}:{port}: {e!r}", TLS_VERSION) from e

    with sock:
        try:
            with context.wrap_socket(sock, server_hostname=host):
                return None
        except (ssl.SSLError, OSError) as e:
            return e


async def tls_handshake(host: str, port: int, label: str, timeout: float) -> Optional[BaseException]:
    """
    以指定版本执行一次 TLS 握手

    Returns:
        握手成功返回 None，否则返回握手错误；本地 OpenSSL 不支持该版本时返回 ValueError/SSLError
    """
    try:
        context = build_tls_context(label)
    except (ValueError, ssl.SSLError) as e:
        logger.debug(f"本地不支持 {label}: {e}")
        return e
    return await asyncio.to_thread(_handshake, host, port, context, timeout)


async def check_tls_version(host: str, port: int, label: str, timeout: float) -> Optional[bool]:
    """
    检查 Broker 是否支持指定的 TLS 版本

    Returns:
        True 表示支持，False 表示因版本不匹配被拒绝，None 表示握手超时

    Raises:
        InfrastructureError: 握手因与版本无关的原因失败
    """
    error = await tls_handshake(host, port, label, timeout)
    if error is None:
        return True
    if isinstance(error, (socket.timeout, TimeoutError)):
        return None
    if is_version_mismatch(error):
        return False
    raise InfrastructureError(f"TLS {label} handshake failed for a reason unrelated to the version: {error!r}",
                              TLS_VERSION)


async def tls_versions(ctx: ProbeContext) -> CheckResult:
    """期望支持的版本必须握手成功，期望禁用的版本必须因版本不匹配而失败"""
    broker = ctx.config.broker
    limit = ctx.config.limit
    timeout = ctx.config.settings.connect_timeout

    supported = [resolve_tls_version(value, f"limit.support_tls_versions[{i}]")
                 for i, value in enumerate(limit.support_tls_versions)]
    unsupported = [resolve_tls_version(value, f"limit.unsupported_tls_versions[{i}]")
                   for i, value in enumerate(limit.unsupported_tls_versions)]

    messages: List[str] = []
    for label in supported:
        accepted = await check_tls_version(broker.host, broker.mqtts_port, label, timeout)
        if accepted is None:
            messages.append(f"TLS version {label} handshake timed out")
        elif not accepted:
            messages.append(f"TLS version {label} is not supported")

    for label in unsupported:
        accepted = await check_tls_version(broker.host, broker.mqtts_port, label, timeout)
        if accepted is None:
            messages.append(f"TLS version {label} handshake timed out")
        elif accepted:
            messages.append(f"Unsafe TLS version {label} is supported")

    return CheckResult.from_messages(TLS_VERSION, messages)
