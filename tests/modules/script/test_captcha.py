import httpx
import pytest

from droidfleet.modules.script.captcha import CaptchaSolver


async def _no_sleep(seconds):
    return None


def _solver(handler, service="2captcha", api_key="k"):
    return CaptchaSolver(
        service=service, api_key=api_key, sleep=_no_sleep, transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_missing_api_key_is_reported_without_requests():
    def handler(request):
        raise AssertionError("no request expected")

    result = await _solver(handler, api_key="").solve("sk", "https://x.com")
    assert result == {"success": False, "error": "No API key configured"}


@pytest.mark.asyncio
async def test_2captcha_submit_and_poll():
    polls = []

    def handler(request: httpx.Request):
        if request.url.path == "/in.php":
            body = request.content.decode()
            assert "method=turnstile" in body
            assert "sitekey=sk" in body
            return httpx.Response(200, json={"status": 1, "request": "42"})
        assert request.url.params["id"] == "42"
        polls.append(1)
        if len(polls) < 3:
            return httpx.Response(200, json={"status": 0, "request": "CAPCHA_NOT_READY"})
        return httpx.Response(200, json={"status": 1, "request": "token-xyz"})

    result = await _solver(handler).solve("sk", "https://x.com")

    assert result["success"] is True
    assert result["solution"] == "token-xyz"
    assert result["task_id"] == "42"
    assert result["cost"] == 0.002
    assert result["solve_time"] >= 0
    assert len(polls) == 3


@pytest.mark.asyncio
async def test_2captcha_error_is_returned_not_raised():
    def handler(request):
        if request.url.path == "/in.php":
            return httpx.Response(200, json={"status": 1, "request": "42"})
        return httpx.Response(200, json={"status": 0, "request": "ERROR_CAPTCHA_UNSOLVABLE"})

    result = await _solver(handler).solve("sk", "https://x.com")
    assert result["success"] is False
    assert result["error"] == "ERROR_CAPTCHA_UNSOLVABLE"


@pytest.mark.asyncio
async def test_capsolver_flow():
    def handler(request: httpx.Request):
        if request.url.path == "/createTask":
            return httpx.Response(200, json={"errorId": 0, "taskId": "t-1"})
        return httpx.Response(200, json={"errorId": 0, "status": "ready", "solution": {"token": "cap-token"}})

    result = await _solver(handler, service="capsolver").solve("sk", "https://x.com")
    assert result["success"] is True
    assert result["solution"] == "cap-token"
    assert result["cost"] == 0.001


@pytest.mark.asyncio
async def test_unsupported_type_fails_cleanly():
    def handler(request):
        raise AssertionError("no request expected")

    result = await _solver(handler).solve("sk", "https://x.com", captcha_type="hcaptcha")
    assert result["success"] is False
    assert "Unsupported type" in result["error"]


@pytest.mark.asyncio
async def test_balance():
    def ok(request):
        return httpx.Response(200, json={"status": 1, "request": "12.5"})

    def broken(request):
        return httpx.Response(500, text="oops")

    assert await _solver(ok).get_balance() == 12.5
    assert await _solver(broken).get_balance() == 0.0
