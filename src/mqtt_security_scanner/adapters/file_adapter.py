"""
文件适配器
将审计结果按行写入文本文件
"""

from pathlib import Path
from typing import Optional, Union

from . import BaseAdapter, format_report_lines
from ..exceptions import ScannerError
from ..logger_config import logger
from ..models import AuditReport
from ..service import AuditService

DEFAULT_RESULT_FILE = "result.txt"


class FileAdapter(BaseAdapter):
    """文件适配器"""

    def __init__(self,
                 path: Union[str, Path] = DEFAULT_RESULT_FILE,
                 service: Optional[AuditService] = None):
        super().__init__(service)
        self.path = Path(path)

    def format_response(self, report: AuditReport) -> Path:
        """写入结果文件并返回文件路径"""
        lines = format_report_lines(report)
        if report.scan_duration is not None:
            lines.append(f"elapsed: {report.scan_duration:.2f}s")
        try:
            self.path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError as e:
            raise ScannerError(f"Failed to write scan result to {self.path}: {e}") from e

        logger.info(f"审计结果已写入: {self.path}")
        return self.path

    def format_error(self, error: Exception) -> str:
        logger.error(f"审计失败: {error}")
        return f"audit aborted: {error}"
