"""
异步 LDPlayerController 包装器

同步的 adb / ldconsole 调用通过线程池转为异步方法：
- 与设备无关的调用（adb devices / connect / ldconsole）走共享 I/O 池
- 针对某个 serial 的命令走该设备的单线程池，保证同一设备串行
"""
from __future__ import annotations

import functools
from typing import Optional

from ...core.thread_pool import run_in_device_io, run_in_io
from .controller import LDPlayerController


class AsyncLDPlayerController:
    """LDPlayerController 的异步代理。"""

    def __init__(self, controller: LDPlayerController) -> None:
        self._sync = controller

    def remember_port(self, instance_name: str, port: Optional[int]) -> None:
        self._sync.remember_port(instance_name, port)

    async def get_adb_port_for_instance(self, instance_name: str) -> int:
        return await run_in_io(self._sync.get_adb_port_for_instance, instance_name)

    async def connect_adb(self, port: int) -> None:
        return await run_in_io(self._sync.connect_adb, port)

    async def resolve_adb_serial(self, port: int) -> str:
        return await run_in_io(self._sync.resolve_adb_serial, port)

    async def wait_for_device_ready(self, serial: str, timeout_ms: int = 60000) -> None:
        return await run_in_device_io(
            serial, functools.partial(self._sync.wait_for_device_ready, serial, timeout_ms=timeout_ms)
        )

    async def execute_adb_command(self, serial: str, command: str) -> str:
        return await run_in_device_io(serial, self._sync.execute_adb_command, serial, command)
