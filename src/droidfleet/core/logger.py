"""
日志配置模块
"""
import sys
from pathlib import Path
from typing import Dict

from loguru import logger
from .config import settings

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

_configured = False
_profile_sinks: Dict[str, int] = {}


def setup_logger(force: bool = False):
    """配置日志系统"""
    global _configured
    if _configured and not force:
        return logger

    # 移除默认处理器（以及已注册的 profile sink）
    logger.remove()
    _profile_sinks.clear()

    log_dir = Path(settings.log_path)
    log_dir.mkdir(parents=True, exist_ok=True)

    # 控制台输出（无控制台的打包环境下 stdout 可能为 None）
    if settings.log_console_enabled and sys.stdout is not None:
        logger.add(sys.stdout, level=settings.log_level, format=_CONSOLE_FORMAT)

    # 文件输出 - 全局日志
    logger.add(
        log_dir / "app_{time:YYYY-MM-DD}.log",
        level=settings.log_level,
        format=_FILE_FORMAT,
        rotation="00:00",
        retention=f"{settings.log_retention_days} days",
        encoding="utf-8",
    )

    # 错误日志单独记录
    logger.add(
        log_dir / "error_{time:YYYY-MM-DD}.log",
        level="ERROR",
        format=_FILE_FORMAT,
        rotation="00:00",
        retention=f"{settings.log_retention_days * 2} days",
        encoding="utf-8",
    )

    _configured = True
    return logger


def get_profile_logger(profile_id):
    """获取 profile 专用日志器（同一 profile 只注册一次 sink）"""
    key = str(profile_id)
    profile_logger = logger.bind(profile_id=key)
    if key in _profile_sinks:
        return profile_logger

    log_dir = Path(settings.log_path) / "profiles"
    log_dir.mkdir(parents=True, exist_ok=True)

    _profile_sinks[key] = logger.add(
        log_dir / f"profile_{key}_{{time:YYYY-MM-DD}}.log",
        level=settings.log_level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
        rotation="00:00",
        retention=f"{settings.log_retention_days} days",
        encoding="utf-8",
        filter=lambda record: record["extra"].get("profile_id") == key,
    )
    return profile_logger


# 初始化日志系统
setup_logger()
