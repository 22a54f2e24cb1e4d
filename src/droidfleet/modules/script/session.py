"""
设备会话解析

每个任务开始时重新解析一次 (port, serial)，不跨任务缓存：
LDPlayer 重启后实例的 ADB 端口可能变化。

1. 通过控制器按实例名查询当前端口（失败 = 任务失败）
2. 端口与 profile 保存的不一致时回写 profile
3. adb connect（失败只告警）
4. 解析规范 serial
5. 等待设备就绪（超时只告警）
"""
from __future__ import annotations

from typing import Callable, Optional

from ...core.config import settings
from ...core.errors import AdbError, DeviceNotReadyError, DroidfleetError
from ...core.logger import logger
from ..emu.async_controller import AsyncLDPlayerController
from ..profiles.manager import ProfileManager, ProfileSnapshot
from .types import DeviceSession

LogFn = Callable[[str], None]


class DeviceSessionResolver:
    def __init__(
        self,
        controller: AsyncLDPlayerController,
        profiles: ProfileManager,
        ready_timeout_ms: Optional[int] = None,
    ) -> None:
        self.controller = controller
        self.profiles = profiles
        self.ready_timeout_ms = ready_timeout_ms or settings.device_ready_timeout_ms
        self._log = logger.bind(module="DeviceSessionResolver")

    def _emit(self, log: Optional[LogFn], message: str) -> None:
        self._log.info(message)
        if log:
            log(message)

    async def resolve(self, profile: ProfileSnapshot, log: Optional[LogFn] = None) -> DeviceSession:
        self.controller.remember_port(profile.instance_name, profile.port)

        port = await self.controller.get_adb_port_for_instance(profile.instance_name)
        self._emit(log, f"Resolved ADB port {port} for instance {profile.instance_name}")

        if port != profile.port:
            try:
                await self.profiles.update_profile(profile.id, {"port": port})
                self._emit(log, f"Updated profile port: {profile.port} -> {port}")
            except DroidfleetError as e:
                self._log.warning(f"Failed to persist port for profile {profile.id}: {e}")
            profile.port = port

        serial = await self._connect_and_resolve(port, log)
        return DeviceSession(actual_port=port, device_serial=serial)

    async def reconnect(self, session: DeviceSession, log: Optional[LogFn] = None) -> DeviceSession:
        """对已知端口重新 connect + 解析 serial，原地更新 session"""
        session.device_serial = await self._connect_and_resolve(session.actual_port, log)
        return session

    async def _connect_and_resolve(self, port: int, log: Optional[LogFn]) -> str:
        try:
            await self.controller.connect_adb(port)
        except AdbError as e:
            self._log.warning(f"ADB connect to port {port} failed (may already be connected): {e}")

        serial = await self.controller.resolve_adb_serial(port)
        self._emit(log, f"Using device serial {serial}")

        try:
            await self.controller.wait_for_device_ready(serial, self.ready_timeout_ms)
        except (DeviceNotReadyError, AdbError) as e:
            self._log.warning(f"Device {serial} readiness check failed, continuing: {e}")
            if log:
                log(f"Warning: device not confirmed ready ({e}), continuing")
        return serial
