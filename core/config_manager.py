"""
Configuration Manager for Progress Tree.

集中管理系统常量和配置参数，所有经验值显式声明并可配置。

使用方式:
    from core.config_manager import config
    timeout = config.GATEWAY_TIMEOUT_SECONDS
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from core.exceptions import ConfigError


CONFIG_DIR = Path(__file__).parent.parent / "config"
RUNTIME_CONFIG_PATH = CONFIG_DIR / "runtime.yaml"


@dataclass
class SystemConfig:
    """
    系统运行时常量配置。

    所有值均可在 config/runtime.yaml 中覆盖。
    """

    # === Sync gateway ===

    # 进度服务地址 (HttpSyncGateway 使用)
    GATEWAY_BASE_URL: str = "http://127.0.0.1:8010/api"

    # 单次请求超时 (秒)
    # 调整建议：网络较慢时可增至 30
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # === Identity ===

    # CLI 本地模式下的默认用户
    DEFAULT_OWNER_ID: str = "local"

    # === Id allocation ===

    ID_PREFIX_GOAL: str = "bar"
    ID_PREFIX_CHECKBOX: str = "chk"
    ID_PREFIX_STREAK: str = "day"

    # === Rendering ===

    # 文本进度条宽度 (字符数)
    PROGRESS_BAR_WIDTH: int = 20


def _load_runtime_config(path: Optional[Path] = None) -> dict:
    """加载运行时配置覆盖（如果存在）。"""
    target = path or RUNTIME_CONFIG_PATH
    if not target.exists():
        return {}

    try:
        with open(target, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", config_path=str(target)) from e

    if not isinstance(data, dict):
        raise ConfigError("Top level must be a mapping", config_path=str(target))
    return data


def get_config(path: Optional[Path] = None) -> SystemConfig:
    """
    获取系统配置实例。

    优先级：runtime.yaml > 默认值
    """
    base = SystemConfig()
    overrides = _load_runtime_config(path)

    for key, value in overrides.items():
        if hasattr(base, key):
            setattr(base, key, value)

    return base


# 全局配置实例
config = get_config()
