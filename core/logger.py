"""
Progress Tree 日志配置模块。

- logs/system.log: 常规操作日志 (INFO+)，包括每次持久化与回滚
- logs/error.log: gateway 失败、数据文件损坏 (ERROR+)
- console: 默认只显示 WARNING+；CLI 的 --verbose 降到 INFO

所有 logger 都挂在 "progress_tree" 命名空间下，setup_logging 可重复调用。
"""
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGS_DIR = Path(__file__).parent.parent / "logs"

ROOT_LOGGER_NAME = "progress_tree"

MAX_BYTES = 5 * 1024 * 1024  # 5MB
BACKUP_COUNT = 3

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONSOLE_FORMAT = "[%(levelname)s] %(message)s"


def _rotating_handler(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging(
    log_level: int = logging.INFO,
    console_level: int = logging.WARNING,
    logs_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    初始化日志系统。

    Args:
        log_level: 文件日志级别 (默认 INFO)
        console_level: 控制台日志级别 (默认 WARNING)
        logs_dir: 日志目录，默认 <project_root>/logs

    Returns:
        "progress_tree" logger
    """
    target_dir = logs_dir or LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # 由 handler 过滤
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_rotating_handler(target_dir / "system.log", log_level))
    logger.addHandler(_rotating_handler(target_dir / "error.log", logging.ERROR))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    获取模块专用的 logger。

    Args:
        name: 模块名称，如 "store", "mutations", "http_gateway"

    Returns:
        logger 实例 (progress_tree.<name>)
    """
    if name:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return logging.getLogger(ROOT_LOGGER_NAME)


def log_corrupt_data_file(path: Path, error_msg: str, logs_dir: Optional[Path] = None) -> Path:
    """
    把无法解析的数据文件原样转存到 logs/，再记一条 error。

    Returns:
        转存文件路径
    """
    target_dir = logs_dir or LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    dump_path = target_dir / f"corrupt_{path.stem}_{datetime.now():%Y%m%d%H%M%S}{path.suffix}"
    dump_path.write_bytes(path.read_bytes())

    get_logger("repository").error("Could not parse %s (%s); copy kept at %s", path, error_msg, dump_path)
    return dump_path
