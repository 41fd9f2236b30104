"""
审计相关的数据模型定义
"""

from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
from datetime import datetime
from dataclasses import dataclass


class Transport(str, Enum):
    """Broker 传输方式枚举"""
    TCP = "tcp"
    TLS = "tls"
    WS = "ws"
    WSS = "wss"

    @property
    def is_websocket(self) -> bool:
        return self in (Transport.WS, Transport.WSS)

    @property
    def is_secure(self) -> bool:
        return self in (Transport.TLS, Transport.WSS)


class Outcome(str, Enum):
    """单次连接/协议尝试的语义结果"""
    ACCEPTED = "accepted"
    REJECTED_AUTH = "rejected_auth"
    REJECTED_IDENTIFIER = "rejected_identifier"
    REJECTED_LIMIT = "rejected_limit"
    TIMED_OUT = "timed_out"
    TRANSPORT_CLOSED = "transport_closed"
    UNKNOWN = "unknown"


class TransportError(str, Enum):
    """传输层错误类型"""
    CLOSED = "closed"      # 对端正常关闭（EOF / 会话在确认前丢失）
    RESET = "reset"        # 对端重置连接


@dataclass(frozen=True)
class RawAttempt:
    """一次网络/协议尝试的原始结果，由分类器转换为 Outcome"""
    timed_out: bool = False
    transport_error: Optional[TransportError] = None
    reason_code: Optional[int] = None
    reason: Optional[str] = None

    def describe(self) -> str:
        """用于日志和错误信息的简短描述"""
        if self.timed_out:
            return "timed out"
        if self.transport_error is not None:
            return f"transport {self.transport_error.value}"
        if self.reason_code is None and not self.reason:
            return "ok"
        if self.reason_code is None:
            return f"reason={self.reason!r}"
        return f"reason_code={self.reason_code:#04x} reason={self.reason!r}"


class BrokerTarget(BaseModel):
    """被测 Broker 信息"""
    model_config = ConfigDict(frozen=True)

    host: str = Field(..., description="Broker 地址")
    mqtt_port: int = Field(default=1883, ge=1, le=65535, description="MQTT 端口")
    mqtts_port: int = Field(default=8883, ge=1, le=65535, description="MQTT over TLS 端口")
    ws_port: int = Field(default=8083, ge=1, le=65535, description="MQTT over WebSocket 端口")
    wss_port: int = Field(default=8084, ge=1, le=65535, description="MQTT over secure WebSocket 端口")
    ws_path: str = Field(default="/mqtt", description="WebSocket 路径")
    username: str = Field(default="", description="认证用户名")
    password: str = Field(default="", description="认证密码")
    deny_topics: List[str] = Field(default_factory=list, description="禁止访问的主题列表")
    tls: bool = Field(default=True, description="是否检查 TLS 版本")
    mqtt_version: str = Field(default="3.1.1", description="MQTT 协议版本 (3.1.1 / 5)")

    def port_for(self, transport: Transport) -> int:
        """获取指定传输方式对应的端口"""
        return {
            Transport.TCP: self.mqtt_port,
            Transport.TLS: self.mqtts_port,
            Transport.WS: self.ws_port,
            Transport.WSS: self.wss_port,
        }[transport]

    @property
    def ports(self) -> List[int]:
        return [self.mqtt_port, self.mqtts_port, self.ws_port, self.wss_port]


class PolicyLimits(BaseModel):
    """Broker 应当强制执行的限制"""
    model_config = ConfigDict(frozen=True)

    client_id_len: int = Field(default=1024, ge=0, description="客户端 ID 长度限制")
    username_len: int = Field(default=1024, ge=0, description="用户名长度限制")
    password_len: int = Field(default=1024, ge=0, description="密码长度限制")
    support_tls_versions: List[Union[int, str]] = Field(
        default_factory=lambda: ["TLS1.2", "TLS1.3"],
        description="应当支持的 TLS 版本"
    )
    unsupported_tls_versions: List[Union[int, str]] = Field(
        default_factory=lambda: ["SSL3.0", "TLS1.0", "TLS1.1"],
        description="应当拒绝的 TLS 版本"
    )
    topic_level: int = Field(default=128, ge=0, description="主题层级限制")
    topic_len: int = Field(default=4096, ge=0, description="主题长度限制")
    payload_len: int = Field(default=1048576, ge=0, description="消息负载长度限制(字节)")
    connection: int = Field(default=1024, ge=0, description="最大并发连接数")
    flapping: int = Field(default=15, ge=0, description="触发黑名单前允许的重连次数")


class ProbeSettings(BaseModel):
    """探测参数：超时、超限量和节奏"""
    model_config = ConfigDict(frozen=True)

    connect_timeout: float = Field(default=3.0, gt=0, description="连接/CONNACK 超时(秒)")
    ack_timeout: float = Field(default=3.0, gt=0, description="发布/订阅确认超时(秒)")
    keepalive: int = Field(default=60, ge=0, description="MQTT keepalive(秒)")

    port_scan_timeout: float = Field(default=1.0, gt=0, description="端口扫描单次连接超时(秒)")
    port_scan_workers: int = Field(default=1000, ge=1, description="端口扫描并发工作者数量")

    client_id_overshoot: int = Field(default=1000, ge=1, description="客户端 ID 超限长度")
    username_overshoot: int = Field(default=10, ge=1, description="用户名超限长度")
    password_overshoot: int = Field(default=10, ge=1, description="密码超限长度")
    topic_level_overshoot: int = Field(default=5, ge=1, description="主题层级超限数")
    topic_len_overshoot: int = Field(default=10, ge=1, description="主题长度超限数")
    payload_overshoot: int = Field(default=1024, ge=1, description="负载超限字节数")

    flapping_overshoot: int = Field(default=10, ge=0, description="连接抖动超限次数")
    flapping_interval: float = Field(default=0.01, ge=0, description="连接抖动间隔(秒)")

    connection_overshoot: int = Field(default=100, ge=0, description="并发连接超限数")
    connection_interval: float = Field(default=0.01, ge=0, description="建立后台连接的间隔(秒)")
    connection_settle: float = Field(default=5.0, ge=0, description="后台连接建立后的等待时间(秒)")


class AuditConfig(BaseModel):
    """一次审计运行的完整配置"""
    model_config = ConfigDict(frozen=True)

    broker: BrokerTarget = Field(..., description="Broker 信息")
    hosts: List[str] = Field(default_factory=list, description="需要端口扫描的其他主机")
    limit: PolicyLimits = Field(default_factory=PolicyLimits, description="限制策略")
    settings: ProbeSettings = Field(default_factory=ProbeSettings, description="探测参数")


class CheckResult(BaseModel):
    """单个检查项的结果"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="检查项名称")
    passed: bool = Field(..., description="是否通过")
    messages: List[str] = Field(default_factory=list, description="诊断信息")

    @classmethod
    def from_messages(cls, name: str, messages: List[str]) -> "CheckResult":
        """没有任何诊断信息即视为通过"""
        return cls(name=name, passed=not messages, messages=list(messages))


class AuditStatus(str, Enum):
    """审计状态枚举"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class AuditReport(BaseModel):
    """审计报告"""
    status: AuditStatus = Field(default=AuditStatus.PENDING, description="审计状态")
    results: List[CheckResult] = Field(default_factory=list, description="检查结果列表")
    start_time: datetime = Field(default_factory=datetime.now, description="开始时间")
    end_time: Optional[datetime] = Field(None, description="结束时间")
    scan_duration: Optional[float] = Field(None, description="耗时(秒)")

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failed_results(self) -> List[CheckResult]:
        return [result for result in self.results if not result.passed]

    def mark_completed(self) -> None:
        """标记审计完成"""
        self.status = AuditStatus.COMPLETED
        self.end_time = datetime.now()
        if self.start_time:
            self.scan_duration = (self.end_time - self.start_time).total_seconds()
