"""
设备动作接口（脚本里的 `helpers`）

脚本对设备的所有操作都经由这里翻译成 adb shell 命令，绑定到任务开始时解析出的 serial。
时长/超时参数一律为毫秒。

错误策略：ADB 失败记录日志后原样抛出；只有 exists / exists_by_xpath 把错误转成 False。
"""
from __future__ import annotations

import asyncio
import random
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ...core.config import settings
from ...core.constants import ASPECT_RATIO_TOLERANCE, DEFAULT_SCREEN_SIZE, KEY_CODES
from ...core.errors import DroidfleetError, ElementNotFoundError
from ...core.logger import logger
from ...core.timeutils import epoch_ms
from ..emu.async_controller import AsyncLDPlayerController
from ..profiles.manager import ProfileSnapshot
from .session import DeviceSessionResolver
from .types import DeviceSession, UIElement
from .uidump import UIHierarchy

LogFn = Callable[[str], None]
SleepFn = Callable[[float], Awaitable[Any]]

_SIZE_RE = re.compile(r"(\d+)\s*x\s*(\d+)")
_ANCHORS = ("center", "top-left", "top-right", "bottom-left", "bottom-right")


def escape_input_text(text: str) -> str:
    """`input text` 不接受空白，空格写作 %s；整体用单引号包裹，内部单引号写作 '\\''"""
    return re.sub(r"\s", "%s", text).replace("'", "'\\''")


class DeviceHelpers:
    def __init__(
        self,
        controller: AsyncLDPlayerController,
        session: DeviceSession,
        profile: ProfileSnapshot,
        log: LogFn,
        resolver: Optional[DeviceSessionResolver] = None,
        sleep: Optional[SleepFn] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._controller = controller
        self._session = session
        self._profile = profile
        self._log_fn = log
        self._resolver = resolver
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        self._logger = logger.bind(module="DeviceHelpers", profile_id=str(profile.id))

    # ── 内部 ──

    @property
    def serial(self) -> str:
        return self._session.device_serial

    @property
    def port(self) -> int:
        return self._session.actual_port

    def _log(self, message: str) -> None:
        self._log_fn(message)

    async def _exec(self, command: str) -> str:
        return await self._controller.execute_adb_command(self.serial, command)

    async def _exec_logged(self, command: str, action: str) -> str:
        try:
            return await self._exec(command)
        except DroidfleetError as e:
            self._log(f"{action} failed: {e}")
            raise

    async def pause(self, ms: float) -> None:
        await self._sleep(max(0.0, ms) / 1000.0)

    # ── 基础手势 ──

    async def tap(self, x: int, y: int, tolerance: Optional[int] = None, multi_tap: bool = False) -> None:
        tol = settings.default_tap_tolerance if tolerance is None else max(0, int(tolerance))

        if multi_tap:
            spread = (tol or 10) // 2
            points = [
                (x, y),
                (x - spread, y - spread),
                (x + spread, y - spread),
                (x - spread, y + spread),
                (x + spread, y + spread),
            ]
            self._log(f"Multi-tapping around ({x}, {y}), spread {spread}px")
            for i, (px, py) in enumerate(points):
                await self._exec_logged(f"shell input tap {max(0, px)} {max(0, py)}", "Tap")
                if i < len(points) - 1:
                    await self.pause(50)
            return

        if tol > 0:
            x = max(0, int(x) + self._rng.randint(-tol, tol))
            y = max(0, int(y) + self._rng.randint(-tol, tol))
        x, y = int(x), int(y)
        self._log(f"Tapping at ({x}, {y})")
        await self._exec_logged(f"shell input tap {x} {y}", "Tap")

    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration: int = 500) -> None:
        x1, y1, x2, y2, duration = (int(v) for v in (x1, y1, x2, y2, duration))
        self._log(f"Swiping from ({x1}, {y1}) to ({x2}, {y2}), duration: {duration}ms")
        await self._exec_logged(f"shell input swipe {x1} {y1} {x2} {y2} {duration}", "Swipe")

    async def type(self, text: str) -> None:
        self._log(f'Typing: "{text}"')
        await self._exec_logged(f"shell input text '{escape_input_text(str(text))}'", "Text input")

    async def screenshot(self, path: Optional[str] = None) -> str:
        path = path or f"/sdcard/screenshot_{epoch_ms()}.png"
        self._log(f"Taking screenshot: {path}")
        await self._exec_logged(f"shell screencap -p {path}", "Screenshot")
        return path

    async def press_key(self, key: str) -> None:
        code = KEY_CODES.get(str(key).upper())
        if code is None:
            raise ValueError(f"Unknown key: {key} (expected one of {', '.join(KEY_CODES)})")
        self._log(f"Pressing key: {key}")
        await self._exec_logged(f"shell input keyevent {code}", "Key press")

    async def launch_app(self, package: str) -> str:
        self._log(f"Launching app: {package}")
        out = await self._exec_logged(
            f"shell monkey -p {package} -c android.intent.category.LAUNCHER 1", "App launch"
        )
        self._log(f"Launch output: {out.strip()[:100]}")
        return out

    async def kill_app(self, package: str) -> None:
        self._log(f"Killing app: {package}")
        await self._exec_logged(f"shell am force-stop {package}", "App kill")

    async def scroll_down(self) -> None:
        size = await self.get_screen_size()
        cx = size["width"] // 2
        await self.swipe(cx, int(size["height"] * 0.78), cx, int(size["height"] * 0.31), 500)

    async def scroll_up(self) -> None:
        size = await self.get_screen_size()
        cx = size["width"] // 2
        await self.swipe(cx, int(size["height"] * 0.31), cx, int(size["height"] * 0.78), 500)

    async def sleep(self, ms: int) -> None:
        self._log(f"Sleeping for {ms}ms...")
        await self.pause(ms)

    async def random_delay(self, min_ms: int = 500, max_ms: int = 1500) -> int:
        ms = self._rng.randint(int(min_ms), int(max(min_ms, max_ms)))
        self._log(f"Random delay: {ms}ms")
        await self.pause(ms)
        return ms

    # ── UI dump / 查询 ──

    async def dump_ui(self) -> str:
        path = settings.ui_dump_path
        await self._exec_logged(f"shell uiautomator dump {path}", "UI dump")
        return await self._exec_logged(f"shell cat {path}", "UI dump")

    async def _hierarchy(self) -> UIHierarchy:
        return UIHierarchy(await self.dump_ui())

    async def find_element(self, selector: str, type: str = "text") -> UIElement:
        self._log(f"Finding element by {type}: {selector}")
        element = (await self._hierarchy()).find(selector, type)
        self._log(f"Found element at ({element.x}, {element.y})")
        return element

    async def find_elements(self, selector: str, type: str = "text") -> List[UIElement]:
        self._log(f"Finding all elements by {type}: {selector}")
        elements = (await self._hierarchy()).find_all(selector, type)
        self._log(f"Found {len(elements)} elements")
        return elements

    async def tap_by_text(self, text: str, tolerance: Optional[int] = None) -> None:
        element = await self.find_element(text, "text")
        await self.tap(element.x, element.y, tolerance=tolerance)

    async def tap_by_id(self, resource_id: str, tolerance: Optional[int] = None) -> None:
        element = await self.find_element(resource_id, "id")
        await self.tap(element.x, element.y, tolerance=tolerance)

    async def tap_by_description(self, desc: str, tolerance: Optional[int] = None) -> None:
        element = await self.find_element(desc, "desc")
        await self.tap(element.x, element.y, tolerance=tolerance)

    async def exists(self, selector: str, type: str = "text") -> bool:
        try:
            return bool((await self._hierarchy()).find_all(selector, type))
        except (DroidfleetError, ValueError) as e:
            self._logger.debug(f"exists({selector!r}, {type}) -> False: {e}")
            return False

    async def _poll(self, check: Callable[[], Awaitable[bool]], timeout: int) -> bool:
        interval = settings.wait_poll_interval_ms
        attempts = max(1, int(timeout) // max(1, interval) + 1)
        deadline = time.monotonic() + timeout / 1000.0
        for attempt in range(attempts):
            if await check():
                return True
            if attempt == attempts - 1 or time.monotonic() >= deadline:
                break
            await self.pause(interval)
        return False

    async def wait_for_element(self, selector: str, type: str = "text", timeout: int = 10000) -> bool:
        self._log(f"Waiting for element: {selector} (timeout: {timeout}ms)")
        if await self._poll(lambda: self.exists(selector, type), timeout):
            self._log(f"Element found: {selector}")
            return True
        raise ElementNotFoundError(f"Element not found after {timeout}ms: {selector}")

    async def wait_for_text(self, text: str, timeout: int = 10000) -> bool:
        return await self.wait_for_element(text, "text", timeout)

    async def get_element_text(self, selector: str, type: str = "id") -> str:
        self._log(f"Getting text from element: {selector}")
        matches = (await self._hierarchy()).find_all(selector, type)
        return (matches[0].text or "") if matches else ""

    # ── XPath ──

    async def find_by_xpath(self, query: str) -> UIElement:
        self._log(f"Finding element by XPath: {query}")
        element = (await self._hierarchy()).find_xpath(query)
        self._log(f"Found element at ({element.x}, {element.y})")
        return element

    async def find_all_by_xpath(self, query: str) -> List[UIElement]:
        self._log(f"Finding all elements by XPath: {query}")
        elements = (await self._hierarchy()).xpath(query)
        self._log(f"Found {len(elements)} elements")
        return elements

    async def tap_by_xpath(self, query: str, tolerance: Optional[int] = None) -> None:
        element = await self.find_by_xpath(query)
        await self.tap(element.x, element.y, tolerance=tolerance)

    async def type_by_xpath(self, query: str, text: str) -> None:
        await self.tap_by_xpath(query, tolerance=0)
        await self.pause(300)
        await self.type(text)

    async def exists_by_xpath(self, query: str) -> bool:
        try:
            return bool((await self._hierarchy()).xpath(query))
        except (DroidfleetError, ValueError) as e:
            self._logger.debug(f"exists_by_xpath({query!r}) -> False: {e}")
            return False

    async def wait_for_xpath(self, query: str, timeout: int = 10000) -> bool:
        self._log(f"Waiting for XPath: {query} (timeout: {timeout}ms)")
        if await self._poll(lambda: self.exists_by_xpath(query), timeout):
            self._log(f"Element found by XPath: {query}")
            return True
        raise ElementNotFoundError(f"Element not found by XPath after {timeout}ms: {query}")

    async def get_text_by_xpath(self, query: str) -> str:
        element = await self.find_by_xpath(query)
        return element.text or ""

    # ── 屏幕 / 相对坐标 ──

    async def get_screen_size(self) -> Dict[str, int]:
        out = await self._exec_logged("shell wm size", "Screen size query")
        # "Physical size: 1080x2400"，有 Override 时以最后一行为准
        matches = _SIZE_RE.findall(out or "")
        if matches:
            w, h = matches[-1]
            return {"width": int(w), "height": int(h)}
        w, h = DEFAULT_SCREEN_SIZE
        return {"width": w, "height": h}

    async def tap_rel(
        self,
        x_percent: float = 50,
        y_percent: float = 50,
        anchor: Optional[str] = None,
        offset_x: float = 0,
        offset_y: float = 0,
        tolerance: Optional[int] = None,
        base_width: Optional[int] = None,
        base_height: Optional[int] = None,
        multi_tap: bool = False,
    ) -> Dict[str, int]:
        """Tap at a resolution-independent position.

        Percent mode maps (x_percent, y_percent) onto the live screen. When the
        live aspect ratio differs from the base one by more than 5%, the Y
        coordinate is scaled around the vertical centre by current/base ratio.

        Anchor mode measures (offset_x, offset_y) in base-screen pixels from one
        of center / top-left / top-right / bottom-left / bottom-right, scaled by
        live width / base width.
        """
        size = await self.get_screen_size()
        width, height = size["width"], size["height"]
        base_w = base_width or settings.base_screen_width
        base_h = base_height or settings.base_screen_height

        if anchor:
            if anchor not in _ANCHORS:
                raise ValueError(f"Unknown anchor: {anchor} (expected one of {', '.join(_ANCHORS)})")
            scale = width / base_w
            ax = {"center": width / 2, "top-left": 0, "bottom-left": 0}.get(anchor, width)
            ay = {"center": height / 2, "top-left": 0, "top-right": 0}.get(anchor, height)
            x = ax + offset_x * scale
            y = ay + offset_y * scale
        else:
            x = width * x_percent / 100.0
            y = height * y_percent / 100.0
            base_ratio = base_w / base_h
            current_ratio = width / height
            if abs(current_ratio - base_ratio) / base_ratio > ASPECT_RATIO_TOLERANCE:
                cy = height / 2
                y = cy + (y - cy) * (current_ratio / base_ratio)

        x = min(max(0, int(round(x))), width - 1)
        y = min(max(0, int(round(y))), height - 1)
        self._log(f"Relative tap -> ({x}, {y}) on {width}x{height}")
        await self.tap(x, y, tolerance=tolerance, multi_tap=multi_tap)
        return {"x": x, "y": y}

    async def swipe_rel(
        self, x1_percent: float, y1_percent: float, x2_percent: float, y2_percent: float, duration: int = 500
    ) -> None:
        size = await self.get_screen_size()
        w, h = size["width"], size["height"]
        await self.swipe(
            int(w * x1_percent / 100), int(h * y1_percent / 100),
            int(w * x2_percent / 100), int(h * y2_percent / 100),
            duration,
        )

    # ── 原始命令 ──

    async def adb(self, command: str) -> str:
        self._log(f"Executing ADB: {command}")
        return await self._exec_logged(command, "ADB command")

    async def adb_shell(self, command: str) -> str:
        return await self.adb(f"shell {command}")

    # ── 脚本上下文 ──

    def log(self, message: Any) -> None:
        self._log(f"[User Script] {message}")

    def get_all_accounts(self) -> List[Dict[str, Any]]:
        accounts = (self._profile.metadata or {}).get("accounts") or {}
        if isinstance(accounts, dict):
            result = []
            for platform, account in accounts.items():
                if isinstance(account, dict):
                    result.append({"platform": platform, **account})
            return result
        if isinstance(accounts, list):
            return [a for a in accounts if isinstance(a, dict)]
        return []

    def get_account(self, platform: str) -> Optional[Dict[str, Any]]:
        key = str(platform).lower()
        for account in self.get_all_accounts():
            if str(account.get("platform", "")).lower() == key:
                return account
        return None

    async def check_connection(self) -> bool:
        self._log("Checking ADB connection...")
        try:
            out = await self._exec("shell echo connected")
        except DroidfleetError as e:
            self._log(f"ADB connection failed: {e}")
            return False
        if "connected" in out:
            self._log("ADB connection OK")
            return True
        self._log("ADB connection might be unstable")
        return False

    async def reconnect(self) -> bool:
        self._log(f"Reconnecting ADB to port {self.port}...")
        if self._resolver is None:
            self._log("Reconnection unavailable: no session resolver")
            return False
        try:
            await self._resolver.reconnect(self._session, self._log)
        except DroidfleetError as e:
            self._log(f"Reconnection failed: {e}")
            return False
        self._log(f"Reconnected successfully, serial: {self.serial}")
        return True
