"""
CLI适配器
在终端中显示审计进度和结果
"""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from . import BaseAdapter
from ..models import AuditConfig, AuditReport
from ..service import AuditService


class CLIAdapter(BaseAdapter):
    """CLI适配器"""

    def __init__(self,
                 service: Optional[AuditService] = None,
                 console: Optional[Console] = None,
                 show_progress: bool = True):
        super().__init__(service)
        self.console = console or Console()
        self.show_progress = show_progress

    async def handle_request(self, config: AuditConfig) -> AuditReport:
        """
        执行审计并显示进度

        Args:
            config: 审计配置

        Returns:
            AuditReport: 审计报告
        """
        self.console.print(f"[bold blue]🚀 开始审计 Broker: {config.broker.host}[/bold blue]")

        if not self.show_progress:
            return await self.service.audit_async(config)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=True,
        ) as progress:
            audit_task = progress.add_task("🔍 审计中...", total=None)

            async def progress_callback(stage: str, detail: str = ""):
                description = f"🔍 {stage}"
                if detail:
                    description += f" - {detail}"
                progress.update(audit_task, description=description)

            report = await self.service.audit_async(config, progress_callback)
            progress.update(audit_task, description="✅ 审计完成", completed=True)

        return report

    def format_response(self, report: AuditReport) -> None:
        """
        显示审计结果表格和摘要

        Args:
            report: 审计报告
        """
        table = Table(title="审计结果")
        table.add_column("检查项", style="cyan", no_wrap=True)
        table.add_column("结果", width=12)
        table.add_column("诊断信息", style="dim")

        for result in report.results:
            verdict = "[green]pass[/green]" if result.passed else "[red]do not pass[/red]"
            table.add_row(escape(result.name), verdict, escape("\n".join(result.messages)))

        self.console.print(table)
        self._display_summary(report)

    def format_error(self, error: Exception) -> None:
        """
        显示错误信息

        Args:
            error: 异常对象
        """
        self.console.print(f"[bold red]审计失败: {escape(str(error))}[/bold red]", soft_wrap=True)

    def _display_summary(self, report: AuditReport) -> None:
        """显示审计摘要"""
        failed = len(report.failed_results)
        passed = len(report.results) - failed

        summary_text = Text()
        summary_text.append(f"检查项: {len(report.results)}\n", style="bold blue")
        summary_text.append(f"通过: {passed}\n", style="green")
        summary_text.append(f"未通过: {failed}", style="red" if failed else "green")
        if report.scan_duration is not None:
            summary_text.append(f"\n审计耗时: {report.scan_duration:.2f}秒", style="dim")

        border = "green" if report.passed else "red"
        self.console.print(Panel(summary_text, title="审计摘要", border_style=border))
