"""
MQTT 安全审计工具模块入口点
"""

from .interfaces.cli_interface import main

if __name__ == "__main__":
    main()
