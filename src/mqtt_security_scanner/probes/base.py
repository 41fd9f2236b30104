"""
检查项公共部分：运行上下文、检查项描述以及连接辅助函数
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple

from ..classifier import classify
from ..exceptions import ConfigurationError, InfrastructureError
from ..mqtt_client import MQTT_MAX_STRING_LEN, ClientFactory, MQTTClientHandle
from ..models import AuditConfig, CheckResult, Outcome, RawAttempt
from ..scanner import PortScanner


@dataclass
class ProbeContext:
    """检查项运行时共享的只读上下文"""
    config: AuditConfig
    clients: ClientFactory
    scanner: PortScanner

    @classmethod
    def from_config(cls, config: AuditConfig) -> "ProbeContext":
        settings = config.settings
        return cls(
            config=config,
            clients=ClientFactory(config.broker, settings),
            scanner=PortScanner(workers=settings.port_scan_workers, timeout=settings.port_scan_timeout),
        )


def _always(config: AuditConfig) -> bool:
    return True


@dataclass(frozen=True)
class ProbeSpec:
    """
    检查项描述

    exclusive 为 True 的检查项在其他检查项全部结束后单独运行。
    """
    name: str
    run: Callable[[ProbeContext], Awaitable[CheckResult]]
    exclusive: bool = False
    enabled: Callable[[AuditConfig], bool] = _always


def resolve(attempt: RawAttempt, probe: str) -> Outcome:
    """分类原始结果，无法识别的结果作为基础设施错误抛出"""
    outcome = classify(attempt)
    if outcome is Outcome.UNKNOWN:
        raise InfrastructureError(f"unclassified broker response ({attempt.describe()})", probe)
    return outcome


def ensure_encodable(length: int, field: str, probe: str, maximum: int = MQTT_MAX_STRING_LEN) -> None:
    """超出 MQTT 编码上限的长度无法发送给 Broker"""
    if length > maximum:
        raise ConfigurationError(field, f"probe length {length} exceeds the MQTT encoding limit of {maximum}", probe)


@asynccontextmanager
async def session(ctx: ProbeContext, **client_kwargs) -> AsyncIterator[Tuple[MQTTClientHandle, RawAttempt]]:
    """建立一次连接，退出时无论结果如何都会关闭句柄"""
    handle = ctx.clients.new_client(**client_kwargs)
    try:
        attempt = await handle.connect()
        yield handle, attempt
    finally:
        await handle.close()


async def connect_outcome(ctx: ProbeContext, probe: str, **client_kwargs) -> Outcome:
    """连接一次（成功则立即断开）并返回语义结果"""
    async with session(ctx, **client_kwargs) as (handle, attempt):
        return resolve(attempt, probe)


async def connected_operation(ctx: ProbeContext,
                              probe: str,
                              operation: Callable[[MQTTClientHandle], Awaitable[RawAttempt]],
                              **client_kwargs) -> Tuple[Outcome, Optional[Outcome]]:
    """
    连接后执行一次发布/订阅操作

    Returns:
        (连接结果, 操作结果)，连接未被接受时操作结果为 None
    """
    async with session(ctx, **client_kwargs) as (handle, attempt):
        connected = resolve(attempt, probe)
        if connected is not Outcome.ACCEPTED:
            return connected, None
        return connected, resolve(await operation(handle), probe)
