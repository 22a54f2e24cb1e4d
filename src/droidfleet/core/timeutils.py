"""
时间工具模块
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytz

from .config import settings


def utcnow() -> datetime:
    """带时区的当前 UTC 时间"""
    return datetime.now(timezone.utc)


def local_tz():
    return pytz.timezone(settings.timezone)


def format_local(dt: datetime) -> str:
    """格式化为本地时间字符串"""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(local_tz()).strftime("%Y-%m-%d %H:%M:%S")


def clock_stamp(dt: datetime | None = None) -> str:
    """日志行前缀用的 HH:MM:SS（UTC）"""
    return (dt or utcnow()).strftime("%H:%M:%S")


def iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def epoch_ms(dt: datetime | None = None) -> int:
    return int((dt or utcnow()).timestamp() * 1000)
