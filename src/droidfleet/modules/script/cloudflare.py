"""
Cloudflare 挑战检测与处理（脚本里的 `cloudflare`）

- detect(): 一次 UI dump，按特征文本/ID/class 判定挑战类型
- wait(): 轮询直到挑战消失
- solve(): 调用打码服务
- handle(): detect 后分流；默认不花钱打码（solve_if_needed=False）

检测失败一律视为"没有挑战"，不会让脚本失败。
"""
from __future__ import annotations

import html
import re
from typing import Any, Dict, Optional

from ...core.constants import ChallengeType
from ...core.errors import DroidfleetError
from ...core.logger import logger
from ...core.timeutils import iso, utcnow
from .captcha import CaptchaSolver
from .helpers import DeviceHelpers

INDICATOR_TEXTS = (
    "Checking your browser",
    "Just a moment",
    "Please wait",
    "Verify you are human",
    "Cloudflare",
    "This process is automatic",
    "Ray ID",
    "Performance & security by Cloudflare",
)
INDICATOR_IDS = ("cf-wrapper", "cf-error-details", "challenge-form", "turnstile-wrapper", "cf-challenge-running")
INDICATOR_CLASSES = ("cf-browser-verification", "cf-challenge-running", "cf-spinner", "turnstile")

_SITEKEY_RE = re.compile(r"""sitekey["']?\s*[:=]\s*["']([^"']+)["']""", re.IGNORECASE)


def classify(dump: str) -> ChallengeType:
    """Classify a raw UI dump. Turnstile wins over JS challenge, then blocked, then generic captcha."""
    text = html.unescape(dump or "")
    hit = any(t in text for t in INDICATOR_TEXTS + INDICATOR_IDS + INDICATOR_CLASSES)
    if not hit:
        return ChallengeType.NONE
    if "Verify you are human" in text or "turnstile" in text:
        return ChallengeType.TURNSTILE
    if "Checking your browser" in text or "Just a moment" in text:
        return ChallengeType.JAVASCRIPT
    if "blocked" in text or "Ray ID" in text:
        return ChallengeType.BLOCKED
    return ChallengeType.CAPTCHA


def extract_sitekey(dump: str) -> Optional[str]:
    m = _SITEKEY_RE.search(html.unescape(dump or ""))
    return m.group(1) if m else None


class ChallengeHandler:
    def __init__(self, helpers: DeviceHelpers, solver: Optional[CaptchaSolver] = None, log=None) -> None:
        self.helpers = helpers
        self.solver = solver or CaptchaSolver()
        self._log_fn = log or (lambda _msg: None)
        self._log = logger.bind(module="ChallengeHandler")

    def _emit(self, message: str) -> None:
        self._log.info(message)
        self._log_fn(message)

    async def detect(self, screenshot: bool = True) -> Dict[str, Any]:
        challenge: Dict[str, Any] = {
            "type": ChallengeType.NONE.value,
            "detected": False,
            "sitekey": None,
            "screenshot": None,
            "timestamp": iso(utcnow()),
        }
        try:
            dump = await self.helpers.dump_ui()
        except DroidfleetError as e:
            self._log.warning(f"Challenge detection failed, assuming none: {e}")
            return challenge

        kind = classify(dump)
        if kind is ChallengeType.NONE:
            return challenge

        challenge.update(type=kind.value, detected=True)
        if kind in (ChallengeType.TURNSTILE, ChallengeType.CAPTCHA):
            challenge["sitekey"] = extract_sitekey(dump)
        self._emit(f"Cloudflare {kind.value} challenge detected")
        if not screenshot:
            return challenge

        try:
            challenge["screenshot"] = await self.helpers.screenshot()
        except DroidfleetError as e:
            self._log.warning(f"Failed to take challenge screenshot: {e}")
        return challenge

    async def wait(self, timeout: int = 30000, interval: int = 2000) -> bool:
        """Poll until no challenge is on screen. Returns False on timeout."""
        attempts = max(1, int(timeout) // max(1, int(interval)))
        self._emit(f"Waiting for Cloudflare challenge to pass (timeout: {timeout}ms)")
        for attempt in range(attempts + 1):
            challenge = await self.detect(screenshot=False)
            if not challenge["detected"]:
                self._emit("Cloudflare challenge passed")
                return True
            if attempt < attempts:
                await self.helpers.pause(interval)
        self._emit(f"Cloudflare challenge still present after {timeout}ms")
        return False

    async def solve(
        self,
        sitekey: str,
        pageurl: str,
        captcha_type: str = "turnstile",
        action: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._emit(f"Solving {captcha_type} captcha via {self.solver.service}")
        result = await self.solver.solve(sitekey, pageurl, captcha_type=captcha_type, action=action)
        if result.get("success"):
            self._emit(f"Captcha solved in {result.get('solve_time')}ms")
        else:
            self._emit(f"Captcha solve failed: {result.get('error')}")
        return result

    async def handle(
        self,
        timeout: int = 30000,
        solve_if_needed: bool = False,
        pageurl: Optional[str] = None,
    ) -> Dict[str, Any]:
        challenge = await self.detect()
        kind = challenge["type"]

        if not challenge["detected"]:
            return {"success": True, "action": "none", "type": kind}

        if kind == ChallengeType.JAVASCRIPT.value:
            passed = await self.wait(timeout=timeout)
            result = {"success": passed, "action": "waited", "type": kind}
            if not passed:
                result["error"] = f"Challenge did not pass within {timeout}ms"
            return result

        if kind == ChallengeType.BLOCKED.value:
            self._emit("Access blocked by Cloudflare (unrecoverable)")
            return {"success": False, "action": "blocked", "type": kind, "error": "Access blocked by Cloudflare"}

        # turnstile / 通用 captcha
        sitekey = challenge.get("sitekey")
        if not sitekey:
            return {"success": False, "action": "failed", "type": kind, "error": "No sitekey"}
        if not solve_if_needed:
            self._emit("Captcha present but solving disabled (solve_if_needed=False)")
            return {"success": False, "action": "failed", "type": kind, "sitekey": sitekey, "error": "Captcha solving disabled"}
        if not pageurl:
            return {"success": False, "action": "failed", "type": kind, "sitekey": sitekey, "error": "No page URL"}

        solved = await self.solve(sitekey, pageurl, captcha_type="turnstile")
        if solved.get("success"):
            return {"success": True, "action": "solved", "type": kind, "token": solved.get("solution"),
                    "cost": solved.get("cost"), "solve_time": solved.get("solve_time")}
        return {"success": False, "action": "failed", "type": kind, "error": solved.get("error")}

    async def get_balance(self) -> float:
        return await self.solver.get_balance()
