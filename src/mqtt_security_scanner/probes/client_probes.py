"""
客户端连接相关的检查项
认证、客户端 ID/用户名/密码长度、连接抖动以及最大并发连接数
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from ..classifier import classify
from ..exceptions import InfrastructureError
from ..logger_config import logger
from ..mqtt_client import MQTTClientHandle, random_string
from ..models import CheckResult, Outcome
from .base import ProbeContext, connect_outcome, ensure_encodable

CLIENT_AUTHENTICATION = "Client Authentication"
CLIENT_ID_LENGTH = "MQTT Client ID Length"
CLIENT_USERNAME_LENGTH = "MQTT Client Username Length"
CLIENT_PASSWORD_LENGTH = "MQTT Client Password Length"
CLIENT_FLAPPING = "MQTT Client Flapping"
CLIENT_CONNECTION = "MQTT Client Connection"

# 超长用户名/密码时可接受的拒绝方式，部分 Broker 直接断开连接而不回复 CONNACK
LENGTH_REJECTIONS = frozenset({Outcome.REJECTED_AUTH, Outcome.REJECTED_LIMIT, Outcome.TRANSPORT_CLOSED})


async def client_authentication(ctx: ProbeContext) -> CheckResult:
    """正确凭据必须能连接，空凭据和错误凭据必须被拒绝"""
    messages: List[str] = []

    outcome = await connect_outcome(ctx, CLIENT_AUTHENTICATION,
                                    prefix="mqtt-security-scanner-with-authentication")
    if outcome is Outcome.TIMED_OUT:
        messages.append("MQTT client connection with authentication timed out")
    elif outcome is not Outcome.ACCEPTED:
        messages.append(f"MQTT client connection with authentication failed ({outcome.value})")

    attempts = [
        ("without authentication", "", "", "mqtt-security-scanner-without-authentication"),
        ("with wrong authentication", f"wrong-user-{random_string(8)}", f"wrong-pass-{random_string(8)}",
         "mqtt-security-scanner-with-wrong-authentication"),
    ]
    for label, username, password, prefix in attempts:
        outcome = await connect_outcome(ctx, CLIENT_AUTHENTICATION,
                                        username=username, password=password, prefix=prefix)
        if outcome is Outcome.ACCEPTED:
            messages.append(f"MQTT client connection {label} succeed")
        elif outcome is Outcome.TIMED_OUT:
            messages.append(f"MQTT client connection {label} timed out")

    return CheckResult.from_messages(CLIENT_AUTHENTICATION, messages)


async def client_id_length(ctx: ProbeContext) -> CheckResult:
    """超长客户端 ID 必须以 identifier rejected 被拒绝"""
    length = ctx.config.limit.client_id_len + ctx.config.settings.client_id_overshoot
    ensure_encodable(length, "limit.client_id_len", CLIENT_ID_LENGTH)

    outcome = await connect_outcome(ctx, CLIENT_ID_LENGTH, client_id=random_string(length))

    messages: List[str] = []
    if outcome is Outcome.ACCEPTED:
        messages.append("MQTT client can still connect even if ID len exceed")
    elif outcome is Outcome.TIMED_OUT:
        messages.append("MQTT client ID length limit connection timed out")
    elif outcome is not Outcome.REJECTED_IDENTIFIER:
        messages.append(f"MQTT client ID length limit does not work, broker answered {outcome.value}")

    return CheckResult.from_messages(CLIENT_ID_LENGTH, messages)


async def _credential_length(ctx: ProbeContext, name: str, field: str, **credentials) -> CheckResult:
    outcome = await connect_outcome(ctx, name, **credentials)

    messages: List[str] = []
    if outcome is Outcome.ACCEPTED:
        messages.append(f"MQTT client can still connect even if {field} len exceed")
    elif outcome is Outcome.TIMED_OUT:
        messages.append(f"MQTT client {field} length limit connection timed out")
    elif outcome not in LENGTH_REJECTIONS:
        messages.append(f"MQTT client {field} length limit does not work, broker answered {outcome.value}")

    return CheckResult.from_messages(name, messages)


async def client_username_length(ctx: ProbeContext) -> CheckResult:
    """超长用户名必须被拒绝"""
    length = ctx.config.limit.username_len + ctx.config.settings.username_overshoot
    ensure_encodable(length, "limit.username_len", CLIENT_USERNAME_LENGTH)
    return await _credential_length(ctx, CLIENT_USERNAME_LENGTH, "username",
                                    username=random_string(length),
                                    prefix="mqtt-security-scanner-exceeded-username")


async def client_password_length(ctx: ProbeContext) -> CheckResult:
    """超长密码必须被拒绝"""
    length = ctx.config.limit.password_len + ctx.config.settings.password_overshoot
    ensure_encodable(length, "limit.password_len", CLIENT_PASSWORD_LENGTH)
    return await _credential_length(ctx, CLIENT_PASSWORD_LENGTH, "password",
                                    password=random_string(length),
                                    prefix="mqtt-security-scanner-exceeded-password")


async def flap(ctx: ProbeContext, client_id: str, cycles: int, interval: float) -> List[Outcome]:
    """
    使用同一个客户端 ID 反复连接/断开

    遇到第一次未被接受的连接即停止。

    Returns:
        List[Outcome]: 每一轮连接的结果
    """
    outcomes: List[Outcome] = []
    for _ in range(cycles):
        await asyncio.sleep(interval)
        outcome = await connect_outcome(ctx, CLIENT_FLAPPING, client_id=client_id)
        outcomes.append(outcome)
        if outcome is not Outcome.ACCEPTED:
            break
    return outcomes


async def client_flapping(ctx: ProbeContext) -> CheckResult:
    """频繁重连后，下一次连接必须因黑名单被拒绝"""
    settings = ctx.config.settings
    client_id = ctx.clients.client_id("mqtt-security-scanner-flapping")
    cycles = ctx.config.limit.flapping + settings.flapping_overshoot

    history = await flap(ctx, client_id, cycles, settings.flapping_interval)
    reconnects = sum(1 for outcome in history if outcome is Outcome.ACCEPTED)
    logger.debug(f"连接抖动: {reconnects}/{cycles} 次连接被接受")

    await asyncio.sleep(settings.flapping_interval)
    outcome = await connect_outcome(ctx, CLIENT_FLAPPING, client_id=client_id)

    messages: List[str] = []
    if outcome is Outcome.ACCEPTED:
        messages.append(f"MQTT client connection flapping does not work, still connected after {reconnects} reconnects")
    elif outcome is Outcome.TIMED_OUT:
        messages.append("MQTT client connection flapping check timed out")
    elif outcome is not Outcome.REJECTED_AUTH:
        messages.append(f"MQTT client connection flapping does not work, broker answered {outcome.value}")

    return CheckResult.from_messages(CLIENT_FLAPPING, messages)


async def _hold(handle: MQTTClientHandle) -> Optional[Outcome]:
    try:
        return classify(await handle.connect())
    except InfrastructureError as e:
        logger.warning(f"后台连接失败 {handle!r}: {e}")
        return None


@asynccontextmanager
async def held_connections(ctx: ProbeContext,
                           count: int,
                           interval: float,
                           required: int = 0) -> AsyncIterator[List[MQTTClientHandle]]:
    """
    以固定间隔建立 count 个后台连接并保持打开

    产出被 Broker 接受的连接；退出时（包括异常路径）释放全部连接。
    因基础设施错误（连接被拒、本地文件描述符耗尽等）导致保持的连接数少于 required 时，
    抛出 InfrastructureError。
    """
    handles: List[MQTTClientHandle] = []
    tasks: List[asyncio.Task] = []
    try:
        for _ in range(count):
            handle = ctx.clients.new_client(prefix="mqtt-security-scanner-connection")
            handles.append(handle)
            tasks.append(asyncio.create_task(_hold(handle)))
            await asyncio.sleep(interval)
        outcomes = await asyncio.gather(*tasks)

        held = [handle for handle, outcome in zip(handles, outcomes) if outcome is Outcome.ACCEPTED]
        failed = sum(1 for outcome in outcomes if outcome is None)
        if failed and len(held) < required:
            raise InfrastructureError(
                f"only {len(held)} of {required} required background connections could be held, "
                f"{failed} of {count} connects failed before reaching the broker",
                CLIENT_CONNECTION,
            )
        yield held
    finally:
        await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.gather(*(handle.close() for handle in handles), return_exceptions=True)
        logger.debug(f"已释放 {len(handles)} 个后台连接")


async def client_connection(ctx: ProbeContext) -> CheckResult:
    """占满并发连接数后，新的连接必须被拒绝"""
    settings = ctx.config.settings
    limit = ctx.config.limit.connection
    count = limit + settings.connection_overshoot

    async with held_connections(ctx, count, settings.connection_interval, required=limit) as held:
        logger.info(f"已保持 {len(held)}/{count} 个后台连接")
        await asyncio.sleep(settings.connection_settle)
        outcome = await connect_outcome(ctx, CLIENT_CONNECTION, prefix="mqtt-security-scanner-connection")

    messages: List[str] = []
    if outcome is Outcome.ACCEPTED:
        messages.append(f"MQTT client connection limit does not work, can still connect with {len(held)} connections open")
    elif outcome is Outcome.TIMED_OUT:
        messages.append("MQTT client connection number scanner connect timeout")
    elif outcome is not Outcome.REJECTED_LIMIT:
        messages.append(f"MQTT client connection limit does not work, broker answered {outcome.value}")

    return CheckResult.from_messages(CLIENT_CONNECTION, messages)
