"""
异常定义

- InfrastructureError: 与被测属性无关的失败（DNS/连接失败、无法分类的响应等），终止整个审计
- ConfigurationError: 配置错误，属于基础设施错误
- AuditAbortedError: 编排器层面的致命错误，携带出错的检查项和阶段
"""

from typing import Optional


class ScannerError(Exception):
    """扫描器异常基类"""


class InfrastructureError(ScannerError):
    """基础设施错误"""

    def __init__(self, message: str, probe: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.probe = probe

    def __str__(self) -> str:
        if self.probe:
            return f"[{self.probe}] {self.message}"
        return self.message


class ConfigurationError(InfrastructureError):
    """配置错误，field 指向出错的配置项"""

    def __init__(self, field: str, message: str, probe: Optional[str] = None):
        super().__init__(f"invalid configuration field '{field}': {message}", probe)
        self.field = field


class AuditAbortedError(ScannerError):
    """审计被致命错误终止"""

    def __init__(self, probe: str, phase: str, cause: BaseException):
        super().__init__(f"Failed to execute scanner item [{probe}] during {phase}: {cause}")
        self.probe = probe
        self.phase = phase
        self.cause = cause
