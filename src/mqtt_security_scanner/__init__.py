"""
MQTT Broker 安全审计工具

针对 MQTT Broker 执行一组相互独立的安全检查：
1. 客户端认证、客户端 ID/用户名/密码长度限制
2. 连接抖动黑名单与最大并发连接数
3. 禁止主题、主题层级/长度与消息负载限制
4. 非 MQTT 数据拒绝、TLS 版本矩阵以及主机端口扫描
"""

__version__ = "0.1.0"

# 导入并初始化日志配置
from .logger_config import logger, configure_logger, init_logger

# 核心业务层
from .classifier import classify
from .mqtt_client import ClientFactory, MQTTClientHandle
from .scanner import PortScanner
from .probes import PROBES, ProbeContext, ProbeSpec, default_probes

# 统一服务层
from .service import (
    AuditService, AuditPhase,
    get_default_service, audit, audit_async
)
from .config_loader import load_config, parse_config

# 异常
from .exceptions import ScannerError, InfrastructureError, ConfigurationError, AuditAbortedError

# 数据模型
from .models import (
    Transport, Outcome, TransportError, RawAttempt,
    BrokerTarget, PolicyLimits, ProbeSettings, AuditConfig,
    CheckResult, AuditStatus, AuditReport
)

__all__ = [
    # 核心业务层
    "classify",
    "ClientFactory",
    "MQTTClientHandle",
    "PortScanner",
    "PROBES",
    "ProbeContext",
    "ProbeSpec",
    "default_probes",

    # 统一服务层
    "AuditService",
    "AuditPhase",
    "get_default_service",
    "audit",
    "audit_async",
    "load_config",
    "parse_config",

    # 异常
    "ScannerError",
    "InfrastructureError",
    "ConfigurationError",
    "AuditAbortedError",

    # 数据模型
    "Transport",
    "Outcome",
    "TransportError",
    "RawAttempt",
    "BrokerTarget",
    "PolicyLimits",
    "ProbeSettings",
    "AuditConfig",
    "CheckResult",
    "AuditStatus",
    "AuditReport",
]
