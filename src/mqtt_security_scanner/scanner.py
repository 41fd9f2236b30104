"""
主机端口扫描
固定数量的工作者从共享队列中取端口进行 TCP connect 扫描
"""

import asyncio
import errno
import socket
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional, Set

from .exceptions import InfrastructureError
from .logger_config import logger
from .models import AuditConfig, CheckResult

HOST_PORT_SCAN = "Host Port Scan"

ALL_PORTS = range(1, 65536)

# 常见的 MQTT 端口，由其他检查项单独审计
MQTT_PORTS: FrozenSet[int] = frozenset({1883, 8883, 8083, 8084, 8443})

Connector = Callable[[str, int, float], Awaitable[bool]]


async def check_port(host: str, port: int, timeout: float) -> bool:
    """
    检查单个 TCP 端口是否开放，连接成功后立即关闭

    Args:
        host: 目标主机
        port: 端口号
        timeout: 连接超时时间(秒)

    Returns:
        bool: 端口是否开放
    """
    try:
        reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except OSError as e:
        if e.errno in (errno.EMFILE, errno.ENFILE):
            raise InfrastructureError(f"file descriptors exhausted while scanning {host}:{port}: {e}") from e
        return False
    except asyncio.TimeoutError:
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class PortScanner:
    """全端口扫描器"""

    def __init__(self,
                 workers: int = 1000,
                 timeout: float = 1.0,
                 connector: Optional[Connector] = None):
        self.workers = workers
        self.timeout = timeout
        self.connector = connector or check_port

    async def scan(self,
                   host: str,
                   excluded: FrozenSet[int] = frozenset(),
                   ports: Optional[Iterable[int]] = None) -> Set[int]:
        """
        扫描主机的开放端口

        Args:
            host: 目标主机
            excluded: 跳过的端口，不会产生连接尝试
            ports: 待扫描端口，默认 1-65535

        Returns:
            Set[int]: 开放端口集合
        """
        address = await self._resolve(host)

        queue: asyncio.Queue = asyncio.Queue()
        for port in (ALL_PORTS if ports is None else ports):
            if port not in excluded:
                queue.put_nowait(port)

        total = queue.qsize()
        open_ports: Set[int] = set()
        lock = asyncio.Lock()

        async def worker() -> None:
            while True:
                try:
                    port = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                if await self.connector(address, port, self.timeout):
                    async with lock:
                        open_ports.add(port)

        logger.info(f"开始端口扫描: {host} ({address})，端口数 {total}，并发 {self.workers}")
        tasks = [asyncio.create_task(worker()) for _ in range(min(self.workers, total))]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(f"端口扫描完成: {host}，发现 {len(open_ports)} 个开放端口")
        return open_ports

    async def _resolve(self, host: str) -> str:
        """解析一次主机地址，之后的连接都直接使用该地址"""
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise InfrastructureError(f"cannot resolve host {host}: {e}") from e
        if not infos:
            raise InfrastructureError(f"cannot resolve host {host}: no address")
        return infos[0][4][0]


async def host_port_scan(ctx) -> CheckResult:
    """扫描 Broker 主机以及配置中的其他主机，报告所有额外开放的端口"""
    config: AuditConfig = ctx.config
    scanner: PortScanner = ctx.scanner
    messages: List[str] = []

    targets = [(config.broker.host, MQTT_PORTS | frozenset(config.broker.ports))]
    targets.extend((host, frozenset()) for host in config.hosts)

    for host, excluded in targets:
        open_ports = await scanner.scan(host, excluded)
        for port in sorted(open_ports):
            messages.append(f"TCP port {port} in host {host} is open")

    return CheckResult.from_messages(HOST_PORT_SCAN, messages)
