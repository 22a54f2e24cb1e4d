"""
LDPlayer 控制器：把实例名解析为 ADB 端口 / serial，并提供命令执行入口

接口：
- get_adb_port_for_instance(name) -> int
- connect_adb(port) -> None
- resolve_adb_serial(port) -> str
- wait_for_device_ready(serial, timeout_ms) -> None
- execute_adb_command(serial, command) -> str
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from ...core.constants import LDPLAYER_BASE_PORT, LDPLAYER_COMMON_PORTS
from ...core.errors import AdbError, DeviceNotReadyError, DeviceResolutionError, LDConsoleError
from ...core.logger import logger
from .adb import Adb
from .ldconsole import LDConsole

_IP_SERIAL = re.compile(r"^127\.0\.0\.1:(\d+)$")
_EMULATOR_SERIAL = re.compile(r"^emulator-(\d+)$")


@dataclass
class ControllerConfig:
    adb_path: str
    ldconsole_path: str
    host: str = "127.0.0.1"
    command_timeout: float = 30.0


class LDPlayerController:
    def __init__(self, cfg: ControllerConfig) -> None:
        self.cfg = cfg
        self.adb = Adb(cfg.adb_path, default_timeout=cfg.command_timeout)
        self.ldconsole = LDConsole(cfg.ldconsole_path)
        self._known_ports: Dict[str, int] = {}
        self._log = logger.bind(module="LDPlayerController")

    def addr(self, port: int) -> str:
        return f"{self.cfg.host}:{port}"

    def connected_ports(self) -> List[int]:
        # 127.0.0.1:5557 与 emulator-5557 是同一台设备
        ports = set()
        for serial, state in self.adb.devices():
            if state != "device":
                continue
            m = _IP_SERIAL.match(serial) or _EMULATOR_SERIAL.match(serial)
            if m:
                ports.add(int(m.group(1)))
        return sorted(ports)

    def _try_connect(self, port: int) -> bool:
        try:
            self.adb.connect(self.addr(port), timeout=2.0)
        except AdbError:
            return False
        return port in self.connected_ports()

    def get_adb_port_for_instance(self, instance_name: str) -> int:
        known = self._known_ports.get(instance_name)
        ports = self.connected_ports()
        self._log.info(f"Resolving ADB port for {instance_name}: connected={ports}, known={known}")

        if known is not None and known in ports:
            return known

        if len(ports) == 1:
            self._known_ports[instance_name] = ports[0]
            return ports[0]

        if len(ports) > 1:
            try:
                index = self.ldconsole.index_of(instance_name)
            except LDConsoleError as e:
                self._log.warning(f"ldconsole query failed, using first connected port: {e}")
                index = None
            if index is None:
                port = ports[0]
            else:
                expected = LDPLAYER_BASE_PORT + index * 2
                port = expected if expected in ports else min(ports, key=lambda p: abs(p - expected))
            self._known_ports[instance_name] = port
            return port

        # 没有已连接设备：先试上次的端口，再扫常用端口
        candidates = ([known] if known is not None else []) + [p for p in LDPLAYER_COMMON_PORTS if p != known]
        for port in candidates:
            if self._try_connect(port):
                self._log.info(f"Connected to port {port} for {instance_name}")
                self._known_ports[instance_name] = port
                return port

        raise DeviceResolutionError(
            f"Cannot get ADB port for {instance_name}: no ADB devices found. "
            "Make sure the instance is running and ADB debugging is enabled."
        )

    def connect_adb(self, port: int) -> None:
        addr = self.addr(port)
        if not self.adb.connect(addr):
            raise AdbError(f"adb connect {addr} failed")
        self._log.info(f"ADB connected to {addr}")

    def resolve_adb_serial(self, port: int) -> str:
        devices = self.adb.devices()
        ready = [serial for serial, state in devices if state == "device"]

        for wanted in (self.addr(port), f"emulator-{port}"):
            if wanted in ready:
                return wanted
        for serial in ready:
            if serial.endswith(f":{port}") or serial.endswith(f"-{port}"):
                return serial
        if ready:
            self._log.warning(f"No exact serial for port {port}, using first device {ready[0]}")
            return ready[0]
        raise DeviceResolutionError(f"No device found in \"device\" state for port {port}")

    def wait_for_device_ready(self, serial: str, timeout_ms: int = 60000) -> None:
        deadline = time.monotonic() + timeout_ms / 1000.0
        if not self.adb.wait_for_device(serial, timeout=min(30.0, timeout_ms / 1000.0)):
            self._log.warning(f"wait-for-device did not return for {serial}, polling boot state")

        while time.monotonic() < deadline:
            try:
                if self.adb.getprop(serial, "sys.boot_completed") == "1":
                    self._log.info(f"Device {serial} is ready")
                    return
            except AdbError as e:
                self._log.debug(f"getprop failed on {serial}: {e}")
            time.sleep(1.0)
        raise DeviceNotReadyError(f"Device {serial} not ready after {timeout_ms}ms")

    def execute_adb_command(self, serial: str, command: str) -> str:
        try:
            out = self.adb.run(serial, command)
        except AdbError as e:
            self._log.error(f"ADB command failed on {serial}: {e}")
            raise
        self._log.debug(f"Executed ADB command on {serial}: {command}")
        return out

    def remember_port(self, instance_name: str, port: Optional[int]) -> None:
        """用 profile 上保存的端口预热缓存"""
        if port:
            self._known_ports.setdefault(instance_name, int(port))
