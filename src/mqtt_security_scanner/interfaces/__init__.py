"""
接口层
目前提供命令行接口
"""

from .cli_interface import CLIInterface, cli, main as cli_main

__all__ = [
    "CLIInterface",
    "cli",
    "cli_main",
]
