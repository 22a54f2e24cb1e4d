"""
第三方验证码打码服务客户端（2Captcha / CapSolver）
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ...core.config import settings
from ...core.errors import CaptchaSolveError
from ...core.logger import logger

_BASE_URLS = {
    "2captcha": "https://2captcha.com",
    "capsolver": "https://api.capsolver.com",
}

_CAPSOLVER_TASK_TYPES = {
    "turnstile": "AntiTurnstileTaskProxyLess",
    "recaptcha_v2": "ReCaptchaV2TaskProxyless",
    "recaptcha_v3": "ReCaptchaV3TaskProxyless",
}

MAX_POLL_ATTEMPTS = 60


class CaptchaSolver:
    def __init__(
        self,
        service: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.service = (service or settings.captcha_service or "2captcha").strip().lower()
        self.api_key = settings.captcha_api_key if api_key is None else api_key
        self._timeout = max(3, int(timeout or settings.captcha_timeout_sec or 30))
        self._sleep = sleep or asyncio.sleep
        self._transport = transport
        self._log = logger.bind(module="CaptchaSolver")

    @property
    def base_url(self) -> str:
        return _BASE_URLS.get(self.service, "")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self._timeout, transport=self._transport)

    @staticmethod
    def _payload(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            raise CaptchaSolveError(f"{response.status_code}: {response.text[:200]}") from None
        if response.status_code >= 400:
            raise CaptchaSolveError(f"{response.status_code}: {payload}")
        return payload

    async def solve(
        self,
        sitekey: str,
        pageurl: str,
        captcha_type: str = "turnstile",
        action: Optional[str] = None,
        data: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Submit a captcha and poll for its token.

        Always returns a dict with ``success``; on success it carries
        ``solution``, ``cost``, ``task_id`` and ``solve_time`` (ms), otherwise
        ``error``. Network and provider errors never propagate.
        """
        if not self.api_key:
            return {"success": False, "error": "No API key configured"}

        self._log.info(f"Solving {captcha_type} captcha using {self.service}...")
        started = time.monotonic()
        try:
            if self.service == "2captcha":
                result = await self._solve_2captcha(sitekey, pageurl, captcha_type, action, data)
            elif self.service == "capsolver":
                result = await self._solve_capsolver(sitekey, pageurl, captcha_type, action)
            else:
                raise CaptchaSolveError(f"Unknown service: {self.service}")
        except (CaptchaSolveError, httpx.HTTPError) as e:
            self._log.error(f"Captcha solve failed: {e}")
            return {"success": False, "error": str(e), "solve_time": int((time.monotonic() - started) * 1000)}

        result["solve_time"] = int((time.monotonic() - started) * 1000)
        self._log.info(f"Captcha solved in {result['solve_time']}ms (cost: ${result['cost']})")
        return result

    async def _solve_2captcha(
        self, sitekey: str, pageurl: str, captcha_type: str, action: Optional[str], data: Optional[str]
    ) -> Dict[str, Any]:
        form: Dict[str, Any] = {"key": self.api_key, "json": 1, "pageurl": pageurl}
        if captcha_type == "turnstile":
            form.update(method="turnstile", sitekey=sitekey)
            if data:
                form["data"] = data
        elif captcha_type in ("recaptcha_v2", "recaptcha_v3"):
            form.update(method="userrecaptcha", googlekey=sitekey)
            if captcha_type == "recaptcha_v3":
                form.update(version="v3", action=action or "verify")
        else:
            raise CaptchaSolveError(f"Unsupported type for 2Captcha: {captcha_type}")

        async with self._client() as client:
            submitted = self._payload(await client.post("/in.php", data=form))
            if submitted.get("status") != 1:
                raise CaptchaSolveError(submitted.get("request") or "Submit failed")
            task_id = submitted["request"]
            self._log.info(f"[2Captcha] Task submitted: {task_id}")

            for attempt in range(MAX_POLL_ATTEMPTS):
                await self._sleep(5)
                polled = self._payload(await client.get(
                    "/res.php", params={"key": self.api_key, "action": "get", "id": task_id, "json": 1}
                ))
                if polled.get("status") == 1:
                    return {"success": True, "solution": polled["request"], "cost": 0.002, "task_id": task_id}
                if polled.get("request") != "CAPCHA_NOT_READY":
                    raise CaptchaSolveError(polled.get("request") or "Unknown error")
                self._log.debug(f"[2Captcha] Waiting for solution... ({attempt + 1}/{MAX_POLL_ATTEMPTS})")
        raise CaptchaSolveError("Timeout waiting for captcha solution")

    async def _solve_capsolver(
        self, sitekey: str, pageurl: str, captcha_type: str, action: Optional[str]
    ) -> Dict[str, Any]:
        task_type = _CAPSOLVER_TASK_TYPES.get(captcha_type)
        if task_type is None:
            raise CaptchaSolveError(f"Unsupported type for CapSolver: {captcha_type}")
        task: Dict[str, Any] = {"type": task_type, "websiteURL": pageurl, "websiteKey": sitekey}
        if captcha_type == "recaptcha_v3":
            task["pageAction"] = action or "verify"

        async with self._client() as client:
            submitted = self._payload(await client.post("/createTask", json={"clientKey": self.api_key, "task": task}))
            if submitted.get("errorId") != 0:
                raise CaptchaSolveError(submitted.get("errorDescription") or "Submit failed")
            task_id = submitted["taskId"]
            self._log.info(f"[CapSolver] Task submitted: {task_id}")

            for attempt in range(MAX_POLL_ATTEMPTS):
                await self._sleep(3)
                polled = self._payload(await client.post(
                    "/getTaskResult", json={"clientKey": self.api_key, "taskId": task_id}
                ))
                if polled.get("errorId") != 0:
                    raise CaptchaSolveError(polled.get("errorDescription") or "Unknown error")
                if polled.get("status") == "ready":
                    token = (polled.get("solution") or {}).get("token")
                    return {"success": True, "solution": token, "cost": 0.001, "task_id": task_id}
                self._log.debug(f"[CapSolver] Waiting... ({attempt + 1}/{MAX_POLL_ATTEMPTS})")
        raise CaptchaSolveError("Timeout waiting for captcha solution")

    async def get_balance(self) -> float:
        if not self.api_key or not self.base_url:
            return 0.0
        try:
            async with self._client() as client:
                if self.service == "2captcha":
                    payload = self._payload(await client.get(
                        "/res.php", params={"key": self.api_key, "action": "getbalance", "json": 1}
                    ))
                    return float(payload.get("request") or 0.0)
                payload = self._payload(await client.post("/getBalance", json={"clientKey": self.api_key}))
                return float(payload.get("balance") or 0.0)
        except (CaptchaSolveError, httpx.HTTPError, TypeError, ValueError) as e:
            self._log.error(f"Failed to get balance: {e}")
            return 0.0
