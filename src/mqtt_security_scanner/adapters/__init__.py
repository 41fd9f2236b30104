"""
适配器层
负责执行审计请求以及审计报告的输出格式化
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ..models import AuditConfig, AuditReport, CheckResult
from ..service import AuditService


def format_result_line(result: CheckResult) -> str:
    """单个检查项的文本行：[name]\\t pass 或 [name]\\t do not pass: msg1, msg2"""
    if result.passed:
        return f"[{result.name}]\t pass"
    return f"[{result.name}]\t do not pass: {', '.join(result.messages)}"


def format_report_lines(report: AuditReport) -> List[str]:
    return [format_result_line(result) for result in report.results]


class BaseAdapter(ABC):
    """适配器基类"""

    def __init__(self, service: Optional[AuditService] = None):
        self.service = service or AuditService()

    async def handle_request(self, config: AuditConfig) -> AuditReport:
        """执行一次审计"""
        return await self.service.audit_async(config)

    @abstractmethod
    def format_response(self, report: AuditReport) -> Any:
        """格式化响应"""
        pass

    @abstractmethod
    def format_error(self, error: Exception) -> Any:
        """格式化错误"""
        pass


from .cli_adapter import CLIAdapter
from .file_adapter import FileAdapter

__all__ = [
    "BaseAdapter",
    "CLIAdapter",
    "FileAdapter",
    "format_report_lines",
    "format_result_line",
]
