"""
LDPlayer ldconsole 封装

- list2() -> [(index, name)]
- index_of(name)
"""
from __future__ import annotations

import subprocess
from typing import List, Optional, Tuple

from ...core.errors import LDConsoleError


class LDConsole:
    def __init__(self, console_path: str) -> None:
        self.path = console_path

    def _run(self, args: list[str], timeout: float = 15.0) -> subprocess.CompletedProcess:
        try:
            cp = subprocess.run([self.path, *args], stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout)
        except FileNotFoundError as e:
            raise LDConsoleError(f"ldconsole executable not found: {self.path}") from e
        except subprocess.TimeoutExpired as e:
            raise LDConsoleError(f"ldconsole {' '.join(args)} timed out") from e
        if cp.returncode != 0:
            raise LDConsoleError((cp.stderr or b"").decode(errors="ignore").strip() or f"ldconsole {args[0]} failed")
        return cp

    def list2(self) -> List[Tuple[int, str]]:
        # 每行形如: index,name,top_hwnd,bind_hwnd,android_started,pid,vbox_pid
        cp = self._run(["list2"])
        result = []
        for line in (cp.stdout or b"").decode(errors="ignore").splitlines():
            parts = line.strip().split(",")
            if len(parts) < 2:
                continue
            try:
                result.append((int(parts[0]), parts[1]))
            except ValueError:
                continue
        return result

    def index_of(self, instance_name: str) -> Optional[int]:
        for index, name in self.list2():
            if name == instance_name:
                return index
        return None
