"""
拟人化行为层（脚本里的 `human`）

在 DeviceHelpers 之上叠加高斯分布的随机延时、坐标偏移和 Bézier 曲线滑动。
所有时长单位为毫秒。
"""
from __future__ import annotations

import asyncio
import math
import random
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from .helpers import DeviceHelpers

SleepFn = Callable[[float], Awaitable[Any]]
Point = Tuple[float, float]

# (pre_delay, post_delay, offset)
_TAP_PROFILES = {
    "normal": ((50, 150), (100, 300), 15),
    "quick": ((20, 50), (50, 100), 10),
    "slow": ((200, 400), (300, 600), 20),
}


def bezier_point(p0: Point, p1: Point, p2: Point, p3: Point, t: float) -> Point:
    u = 1 - t
    x = u ** 3 * p0[0] + 3 * u * u * t * p1[0] + 3 * u * t * t * p2[0] + t ** 3 * p3[0]
    y = u ** 3 * p0[1] + 3 * u * u * t * p1[1] + 3 * u * t * t * p2[1] + t ** 3 * p3[1]
    return x, y


def swipe_steps(start: Point, end: Point) -> int:
    distance = math.hypot(end[0] - start[0], end[1] - start[1])
    return max(10, min(50, int(distance // 10)))


class HumanBehavior:
    def __init__(
        self,
        helpers: DeviceHelpers,
        log: Optional[Callable[[str], None]] = None,
        sleep: Optional[SleepFn] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.helpers = helpers
        self._log = log or (lambda _msg: None)
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    # ── 随机基元 ──

    def gaussian_between(self, low: float, high: float) -> float:
        """高斯采样归一化到 [low, high]，集中在区间中部"""
        normalized = (self._rng.gauss(0.0, 1.0) + 3) / 6
        clamped = max(0.0, min(1.0, normalized))
        return low + (high - low) * clamped

    def random_offset(self, low: float, high: float) -> float:
        return self.gaussian_between(low, high)

    async def delay(self, low: float, high: float) -> float:
        ms = self.gaussian_between(low, high)
        await self._sleep(ms / 1000.0)
        return ms

    # ── 点击 ──

    async def _tap(self, x: int, y: int, profile: str) -> Tuple[int, int]:
        pre, post, offset = _TAP_PROFILES[profile]
        await self.delay(*pre)
        tx = max(0, round(x + self._rng.uniform(-offset, offset)))
        ty = max(0, round(y + self._rng.uniform(-offset, offset)))
        await self.helpers.tap(tx, ty, tolerance=0)
        await self.delay(*post)
        return tx, ty

    async def tap(self, x: int, y: int) -> Tuple[int, int]:
        return await self._tap(x, y, "normal")

    async def quick_tap(self, x: int, y: int) -> Tuple[int, int]:
        return await self._tap(x, y, "quick")

    async def slow_tap(self, x: int, y: int) -> Tuple[int, int]:
        return await self._tap(x, y, "slow")

    # ── 输入 ──

    async def type(self, text: str, char_delay: Tuple[int, int] = (80, 200), pause_chance: float = 0.03) -> None:
        self._log(f'Human typing {len(text)} characters')
        for ch in str(text):
            await self.helpers.type(ch)
            await self.delay(*char_delay)
            if self._rng.random() < pause_chance:
                await self.delay(500, 1500)

    # ── 滑动 ──

    def swipe_path(self, x1: float, y1: float, x2: float, y2: float, wobble: bool = True) -> List[Tuple[int, int]]:
        """Touch points along a cubic Bézier curve between two points."""
        mid_x, mid_y = (x1 + x2) / 2, (y1 + y2) / 2
        c1 = (mid_x + self._rng.uniform(-25, 25), mid_y + self._rng.uniform(-25, 25))
        c2 = (mid_x + self._rng.uniform(-25, 25), mid_y + self._rng.uniform(-25, 25))
        steps = swipe_steps((x1, y1), (x2, y2))

        points = []
        for i in range(steps + 1):
            t = i / steps
            px, py = bezier_point((x1, y1), c1, c2, (x2, y2), t)
            if wobble and 0 < i < steps:
                intensity = math.sin(t * math.pi) * 3
                px += self._rng.uniform(-0.5, 0.5) * intensity
                py += self._rng.uniform(-0.5, 0.5) * intensity
            points.append((max(0, round(px)), max(0, round(py))))
        return points

    async def swipe(
        self,
        x1: int,
        y1: int,
        x2: int,
        y2: int,
        curve: bool = True,
        wobble: bool = True,
        duration_range: Tuple[int, int] = (300, 600),
    ) -> int:
        """Swipe like a finger would; returns the total gesture duration in ms."""
        duration = int(self.gaussian_between(*duration_range))

        if not curve and not wobble:
            await self.helpers.swipe(x1, y1, x2, y2, duration)
        else:
            if curve:
                points = self.swipe_path(x1, y1, x2, y2, wobble=wobble)
            else:
                points = [(x1, y1), (x2, y2)]
            segments = len(points) - 1
            step_ms = max(10, duration // segments)
            for (sx, sy), (ex, ey) in zip(points, points[1:]):
                await self.helpers.swipe(sx, sy, ex, ey, step_ms)
            duration = step_ms * segments

        await self.delay(200, 500)
        return duration

    async def scroll(self, distance: int = 300, center_x: Optional[int] = None, start_y: Optional[int] = None) -> None:
        """Scroll content by `distance` px; positive scrolls down (finger moves up)."""
        if center_x is None or start_y is None:
            size = await self.helpers.get_screen_size()
            center_x = size["width"] // 2 if center_x is None else center_x
            start_y = int(size["height"] * 0.6) if start_y is None else start_y

        direction = -1 if distance > 0 else 1
        chunks = math.ceil(abs(distance) / 100)
        self._log(f"Human scroll {distance}px in {chunks} chunks")
        for _ in range(chunks):
            amount = 100 * direction + self._rng.uniform(-10, 10)
            await self.swipe(
                center_x, start_y, center_x, max(0, round(start_y + amount)),
                curve=False, wobble=False, duration_range=(200, 400),
            )
            await self.delay(50, 150)

    # ── 停顿 ──

    async def think(self) -> float:
        return await self.delay(800, 2000)

    async def read(self, text_length: int) -> float:
        words = max(0, int(text_length)) / 5
        base = words / 250 * 60 * 1000
        return await self.delay(base * 0.8, base * 1.2)

    async def idle(self, duration: int = 3000) -> int:
        """Random short curved swipes until `duration` ms of activity has been spent."""
        spent = 0
        gestures = 0
        while spent < duration:
            x = round(100 + self._rng.random() * 200)
            y = round(200 + self._rng.random() * 400)
            spent += await self.swipe(x, y, x + 50, y + 50)
            spent += await self.delay(500, 1500)
            gestures += 1
        self._log(f"Idle for ~{spent:.0f}ms ({gestures} gestures)")
        return gestures
