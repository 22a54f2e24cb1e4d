"""
ADB 适配封装

基于 settings.adb_path，提供基础操作：
- connect(addr)
- devices() -> [(serial, state)]
- run(serial, command) -> stdout
- shell(serial, cmd) -> (returncode, output)
- getprop(serial, name)
- wait_for_device(serial)
"""
from __future__ import annotations

import shlex
import subprocess
from typing import List, Tuple

from ...core.errors import AdbError


def _decode(data: bytes | None) -> str:
    return (data or b"").decode(errors="ignore")


class Adb:
    def __init__(self, adb_path: str = "adb", default_timeout: float = 30.0) -> None:
        self.adb = adb_path
        self.default_timeout = default_timeout

    def _run(self, args: List[str], timeout: float | None = None) -> subprocess.CompletedProcess:
        try:
            cp = subprocess.run(
                [self.adb, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout or self.default_timeout,
            )
        except FileNotFoundError as e:
            raise AdbError(f"ADB executable not found: {self.adb}") from e
        except subprocess.TimeoutExpired as e:
            raise AdbError(f"ADB command timed out: {' '.join(args)}") from e
        return cp

    def connect(self, addr: str, timeout: float = 10.0) -> bool:
        cp = self._run(["connect", addr], timeout=timeout)
        out = _decode(cp.stdout).lower()
        return cp.returncode == 0 and ("connected" in out or "already" in out) and "cannot" not in out

    def devices(self, timeout: float = 10.0) -> List[Tuple[str, str]]:
        """Return every (serial, state) pair listed by `adb devices`."""
        cp = self._run(["devices"], timeout=timeout)
        result = []
        for line in _decode(cp.stdout).splitlines():
            line = line.strip()
            if not line or line.lower().startswith("list of devices") or line.startswith("*"):
                continue
            parts = line.split()
            if len(parts) >= 2:
                result.append((parts[0], parts[1]))
        return result

    @staticmethod
    def build_args(serial: str, command: str) -> List[str]:
        """Split a textual adb command into argv.

        `shell ...` commands keep everything after `shell` as one argument so
        quoting is interpreted by the device shell rather than locally.
        """
        command = command.strip()
        head, _, rest = command.partition(" ")
        if head == "shell" and rest.strip():
            return ["-s", serial, "shell", rest.strip()]
        return ["-s", serial, *shlex.split(command)]

    def run(self, serial: str, command: str, timeout: float | None = None) -> str:
        cp = self._run(self.build_args(serial, command), timeout=timeout)
        if cp.returncode != 0:
            err = _decode(cp.stderr).strip() or _decode(cp.stdout).strip()
            raise AdbError(f"ADB command failed ({command}): {err or f'exit code {cp.returncode}'}")
        return _decode(cp.stdout)

    def shell(self, serial: str, cmd: str, timeout: float | None = None) -> tuple[int, str]:
        """执行 adb shell 命令，返回 (returncode, output)"""
        cp = self._run(["-s", serial, "shell", cmd], timeout=timeout)
        return cp.returncode, _decode(cp.stdout)

    def getprop(self, serial: str, name: str, timeout: float = 5.0) -> str:
        rc, out = self.shell(serial, f"getprop {name}", timeout=timeout)
        return out.strip() if rc == 0 else ""

    def wait_for_device(self, serial: str, timeout: float = 30.0) -> bool:
        try:
            cp = self._run(["-s", serial, "wait-for-device"], timeout=timeout)
        except AdbError:
            return False
        return cp.returncode == 0
