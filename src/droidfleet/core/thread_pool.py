"""
全局线程池管理

ADB 与数据库调用都是同步阻塞的，统一 offload 到线程池：

- I/O 池：同步 DB 操作、与设备无关的 adb 命令（adb devices / connect / ldconsole）
- 设备 I/O 池：每个设备一个单线程池，保证同一设备的 adb 命令串行执行
"""
from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

from .config import settings
from .logger import logger

_io_pool: Optional[ThreadPoolExecutor] = None
_device_pools: Dict[str, ThreadPoolExecutor] = {}
_device_lock = threading.Lock()


def _auto_io_pool_size() -> int:
    """根据 profile 数量自动计算 I/O 线程池大小。

    规则: max(8, profile_count * 2 + 4)，上限 32。
    """
    try:
        from ..db import SessionLocal
        from ..db.models import Profile
        with SessionLocal() as db:
            count = db.query(Profile).count()
        return min(max(8, count * 2 + 4), 32)
    except Exception:
        return 16


def get_io_pool() -> ThreadPoolExecutor:
    """获取 I/O 线程池。"""
    global _io_pool
    if _io_pool is None:
        size = settings.io_thread_pool_size
        if size <= 0:
            size = _auto_io_pool_size()
        _io_pool = ThreadPoolExecutor(max_workers=size, thread_name_prefix="adb-io")
        logger.info("I/O 线程池已创建: max_workers={}", size)
    return _io_pool


def get_device_io_pool(io_key: str) -> ThreadPoolExecutor:
    """获取指定设备的单线程 I/O 池。"""
    key = str(io_key or "").strip()
    if not key:
        return get_io_pool()

    with _device_lock:
        pool = _device_pools.get(key)
        if pool is None:
            index = len(_device_pools) + 1
            pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"device-io-{index}")
            _device_pools[key] = pool
            logger.info("设备 I/O 线程池已创建: io_key={}", key)
        return pool


async def run_in_io(func, *args):
    """在 I/O 线程池中执行同步函数并 await 结果。"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_io_pool(), func, *args)


async def run_in_device_io(io_key: str, func, *args):
    """在指定设备的单线程 I/O 池中执行同步函数并 await 结果。"""
    key = str(io_key or "").strip()
    if not key:
        return await run_in_io(func, *args)

    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_device_io_pool(key), func, *args)


async def run_in_db(func, *args):
    """在 I/O 线程池中执行同步 DB 操作并 await 结果。"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_io_pool(), func, *args)


def device_io_pool_stats() -> dict:
    """返回设备 I/O 池统计。"""
    with _device_lock:
        return {
            "pool_count": len(_device_pools),
            "serials": sorted(_device_pools),
        }


def shutdown_pools() -> None:
    """关闭所有线程池（在 app shutdown 时调用）。"""
    global _io_pool
    if _io_pool:
        _io_pool.shutdown(wait=False)
        _io_pool = None
    with _device_lock:
        for pool in _device_pools.values():
            pool.shutdown(wait=False)
        _device_pools.clear()
    logger.info("线程池已关闭")
