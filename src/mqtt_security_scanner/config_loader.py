"""
配置文件加载
读取 JSON 配置文件并校验为 AuditConfig
"""

import json
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import ValidationError

from .exceptions import ConfigurationError
from .logger_config import logger
from .models import AuditConfig

DEFAULT_CONFIG_PATH = Path("config") / "config.json"


def _field_path(loc) -> str:
    """将 pydantic 的错误位置转换为 limit.support_tls_versions[1] 形式"""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "<root>"


def parse_config(data: Dict[str, Any]) -> AuditConfig:
    """
    校验配置字典

    Raises:
        ConfigurationError: 缺少字段或字段类型错误
    """
    if not isinstance(data, dict):
        raise ConfigurationError("<root>", f"expected a JSON object, got {type(data).__name__}")
    try:
        return AuditConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        raise ConfigurationError(_field_path(first["loc"]), first["msg"]) from e


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> AuditConfig:
    """
    从 JSON 文件加载审计配置

    Args:
        path: 配置文件路径

    Returns:
        AuditConfig: 审计配置

    Raises:
        ConfigurationError: 文件不存在、不是合法 JSON 或校验失败
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(str(path), "configuration file not found") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(str(path), f"invalid JSON at line {e.lineno} column {e.colno}: {e.msg}") from e

    config = parse_config(data)
    logger.debug(f"已加载配置文件: {path}，Broker {config.broker.host}，额外主机 {len(config.hosts)} 个")
    return config
