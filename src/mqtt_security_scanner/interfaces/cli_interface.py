"""
CLI接口
基于适配器架构的命令行界面
"""

import asyncio
import sys
from typing import Optional

import click

from ..adapters import BaseAdapter, CLIAdapter, FileAdapter
from ..config_loader import DEFAULT_CONFIG_PATH, load_config
from ..exceptions import ScannerError
from ..logger_config import configure_logger, logger
from ..mqtt_client import ClientFactory
from ..probes import default_probes
from ..probes.protocol_probes import TLS_VERSION, resolve_tls_version
from ..service import AuditService

# 退出码
EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_ABORTED = 2


class CLIInterface:
    """CLI接口控制器"""

    def __init__(self, service: Optional[AuditService] = None):
        self.service = service or AuditService()

    def build_adapter(self, report_mode: str, output: str, quiet: bool) -> BaseAdapter:
        if report_mode == "file":
            return FileAdapter(output, service=self.service)
        return CLIAdapter(self.service, show_progress=not quiet)

    def run(self, config_path: str, report_mode: str, output: str, quiet: bool = False) -> int:
        """
        加载配置、执行审计并输出结果

        Returns:
            int: 进程退出码
        """
        logger.info(f"CLIInterface: 执行审计 - config={config_path}, report={report_mode}")
        adapter = self.build_adapter(report_mode, output, quiet)
        try:
            config = load_config(config_path)
            report = asyncio.run(adapter.handle_request(config))
            written = adapter.format_response(report)
        except ScannerError as e:
            message = adapter.format_error(e)
            if isinstance(message, str):
                click.echo(message, err=True)
            return EXIT_ABORTED

        if report_mode == "file":
            click.echo(f"✅ 审计结果已写入: {written}")
        return EXIT_PASSED if report.passed else EXIT_FAILED


cli_interface = CLIInterface()


@click.group()
@click.version_option("0.1.0", prog_name="mqtt-security-scanner")
@click.option("--log-level", default=None,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="日志级别（默认读取 MQTT_SCANNER_LOG_LEVEL）")
@click.option("--log-file", default=None, help="日志文件路径")
def cli(log_level, log_file):
    """🔐 MQTT Broker 安全审计工具

    对 Broker 执行认证、长度限制、连接抖动、并发连接、主题限制、
    非法协议、TLS 版本以及主机端口等一系列安全检查。
    """
    if log_level or log_file:
        configure_logger(level=(log_level or "INFO").upper(), log_file=log_file)


@cli.command()
@click.option("-c", "--config", "config_path", default=str(DEFAULT_CONFIG_PATH), show_default=True,
              help="配置文件路径")
@click.option("-r", "--report", "report_mode", default="stdout", show_default=True,
              type=click.Choice(["stdout", "file"]), help="结果输出方式")
@click.option("-o", "--output", default="result.txt", show_default=True, help="file 模式下的结果文件")
@click.option("-q", "--quiet", is_flag=True, help="不显示进度")
def scan(config_path, report_mode, output, quiet):
    """执行一次完整的安全审计

    示例:
      scan                                 # 使用 config/config.json
      scan -c broker.json -r file          # 结果写入 result.txt
      scan -r file -o audit.txt            # 结果写入指定文件
    """
    sys.exit(cli_interface.run(config_path, report_mode, output, quiet))


@cli.command()
@click.option("-c", "--config", "config_path", default=str(DEFAULT_CONFIG_PATH), show_default=True,
              help="配置文件路径")
def validate(config_path):
    """校验配置文件（不产生任何网络连接）"""
    try:
        config = load_config(config_path)
        ClientFactory(config.broker, config.settings)
        for field in ("support_tls_versions", "unsupported_tls_versions"):
            for i, value in enumerate(getattr(config.limit, field)):
                resolve_tls_version(value, f"limit.{field}[{i}]")
    except ScannerError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(EXIT_ABORTED)

    probes = default_probes(config)
    click.echo(f"✅ 配置有效: Broker {config.broker.host}")
    click.echo(f"  • 检查项: {len(probes)} 个")
    for spec in probes:
        suffix = "（最后单独运行）" if spec.exclusive else ""
        click.echo(f"    - {spec.name}{suffix}")
    if not config.broker.tls:
        click.echo(f"  • 未启用 TLS，跳过 {TLS_VERSION}")
    click.echo(f"  • 额外端口扫描主机: {', '.join(config.hosts) or '无'}")


def main():
    """CLI入口点"""
    cli()


if __name__ == '__main__':
    main()
