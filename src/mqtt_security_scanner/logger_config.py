"""
日志配置
loguru 输出到 stderr（以及可选的日志文件），在导入时根据环境变量初始化

检查项运行期间通过 logger.contextualize(probe=...) 绑定检查项名称，
日志行中会带上 [检查项] 前缀；并发运行的检查项日志因此可以区分。
超长客户端 ID、主题等探测数据在日志中会被截断。
"""

import os
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

ENV_PREFIX = "MQTT_SCANNER_LOG_"

DEFAULT_MAX_MESSAGE_LEN = 512

_max_message_len = DEFAULT_MAX_MESSAGE_LEN


def _truncate(record) -> None:
    message = record["message"]
    if _max_message_len and len(message) > _max_message_len:
        record["message"] = f"{message[:_max_message_len]}...(+{len(message) - _max_message_len} chars)"


def _probe_tag(record) -> str:
    probe = record["extra"].get("probe")
    return "<magenta>[{extra[probe]}]</magenta> " if probe else ""


def detailed_formatter(record):
    """详细格式：时间、级别、源码位置、检查项、消息"""
    try:
        project_root = Path(__file__).parent.parent.parent
        location = Path(record["file"].path).relative_to(project_root)
    except (ValueError, AttributeError):
        location = Path(record["file"].path).name if record["file"].path else "unknown"

    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
        f"<cyan>{location}</cyan>:<yellow>{{function}}</yellow>:<blue>{{line}}</blue> | "
        f"{_probe_tag(record)}<level>{{message}}</level>\n{{exception}}"
    )


def simple_formatter(record):
    """简化格式"""
    return (
        "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
        f"{_probe_tag(record)}<level>{{message}}</level>\n{{exception}}"
    )


def configure_logger(level: str = "INFO",
                     detailed: bool = True,
                     log_file: Optional[str] = None,
                     max_message_len: int = DEFAULT_MAX_MESSAGE_LEN) -> List[int]:
    """
    配置日志输出，重复调用时替换已有的输出

    Args:
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        detailed: 是否使用详细格式
        log_file: 日志文件路径（可选）
        max_message_len: 单条消息的最大长度，0 表示不截断

    Returns:
        List[int]: 新增输出的 handler id
    """
    global _max_message_len
    _max_message_len = max_message_len

    logger.remove()
    logger.configure(patcher=_truncate)
    formatter = detailed_formatter if detailed else simple_formatter

    handler_ids = [logger.add(
        sys.stderr,
        format=formatter,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )]

    if log_file:
        handler_ids.append(logger.add(
            log_file,
            format=formatter,
            level=level,
            rotation="100 MB",
            retention="7 days",
            compression="zip",
            backtrace=True,
            diagnose=False,
            enqueue=True,
        ))
    return handler_ids


def init_logger() -> List[int]:
    """从 MQTT_SCANNER_LOG_* 环境变量初始化日志"""
    return configure_logger(
        level=os.getenv(f"{ENV_PREFIX}LEVEL", "INFO").upper(),
        detailed=os.getenv(f"{ENV_PREFIX}DETAILED", "true").lower() == "true",
        log_file=os.getenv(f"{ENV_PREFIX}FILE") or None,
        max_message_len=int(os.getenv(f"{ENV_PREFIX}MAX_LEN", str(DEFAULT_MAX_MESSAGE_LEN))),
    )


init_logger()

__all__ = ["logger", "configure_logger", "init_logger"]
