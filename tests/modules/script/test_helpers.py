import random
import shlex

import pytest

from droidfleet.core.errors import AdbError, ElementNotFoundError
from droidfleet.modules.profiles.manager import ProfileSnapshot
from droidfleet.modules.script.helpers import DeviceHelpers, escape_input_text
from droidfleet.modules.script.types import DeviceSession

LOGIN_DUMP = (
    '<?xml version="1.0" encoding="UTF-8"?><hierarchy rotation="0">'
    '<node text="Login" resource-id="com.x:id/login" class="android.widget.Button" '
    'content-desc="" bounds="[100,200][300,250]" /></hierarchy>'
)


class _FakeController:
    def __init__(self, screen="Physical size: 1080x2400", dump=LOGIN_DUMP, fail_on=()):
        self.calls = []
        self.screen = screen
        self.dump = dump
        self.fail_on = fail_on

    async def execute_adb_command(self, serial, command):
        self.calls.append((serial, command))
        if any(command.startswith(prefix) for prefix in self.fail_on):
            raise AdbError(f"ADB command failed ({command}): device offline")
        if command == "shell wm size":
            return self.screen
        if command.startswith("shell cat"):
            return self.dump
        if command == "shell echo connected":
            return "connected\n"
        return ""


async def _no_sleep(seconds):
    return None


def _helpers(controller=None, metadata=None, resolver=None, seed=1):
    logs = []
    helpers = DeviceHelpers(
        controller or _FakeController(),
        DeviceSession(actual_port=5555, device_serial="emulator-5555"),
        ProfileSnapshot(id=1, name="p1", instance_name="LDPlayer", metadata=metadata or {}),
        logs.append,
        resolver=resolver,
        sleep=_no_sleep,
        rng=random.Random(seed),
    )
    return helpers, logs


def _commands(controller):
    return [cmd for _, cmd in controller.calls]


@pytest.mark.asyncio
async def test_tap_rel_center_on_tall_screen():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    point = await helpers.tap_rel(50, 50, tolerance=0)

    assert point == {"x": 540, "y": 1200}
    assert _commands(ctrl)[-1] == "shell input tap 540 1200"


@pytest.mark.asyncio
async def test_tap_rel_compensates_y_for_aspect_ratio():
    helpers, _ = _helpers(_FakeController())

    # 1080x2400 (0.45) vs 360x640 (0.5625): 偏离中心的距离按 0.8 缩放
    point = await helpers.tap_rel(50, 75, tolerance=0)
    assert point == {"x": 540, "y": 1200 + round(600 * 0.8)}


@pytest.mark.asyncio
async def test_tap_rel_without_compensation_when_ratio_matches():
    helpers, _ = _helpers(_FakeController(screen="Physical size: 720x1280"))
    assert await helpers.tap_rel(25, 75, tolerance=0) == {"x": 180, "y": 960}


@pytest.mark.asyncio
async def test_tap_rel_anchor_scales_offsets():
    helpers, _ = _helpers(_FakeController())
    # 宽度 1080 / 基准 360 = 3 倍
    point = await helpers.tap_rel(anchor="bottom-right", offset_x=-20, offset_y=-40, tolerance=0)
    assert point == {"x": 1020, "y": 2280}

    with pytest.raises(ValueError):
        await helpers.tap_rel(anchor="middle")


@pytest.mark.asyncio
async def test_tap_jitter_stays_within_tolerance():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    for _ in range(20):
        await helpers.tap(100, 100, tolerance=5)

    for cmd in _commands(ctrl):
        _, _, _, x, y = cmd.split()
        assert 95 <= int(x) <= 105
        assert 95 <= int(y) <= 105


@pytest.mark.asyncio
async def test_tap_jitter_never_goes_negative():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)
    for _ in range(20):
        await helpers.tap(0, 0, tolerance=20)
    assert all(int(v) >= 0 for cmd in _commands(ctrl) for v in cmd.split()[3:])


@pytest.mark.asyncio
async def test_multi_tap_issues_center_and_four_corners():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    await helpers.tap(200, 300, tolerance=20, multi_tap=True)

    assert _commands(ctrl) == [
        "shell input tap 200 300",
        "shell input tap 190 290",
        "shell input tap 210 290",
        "shell input tap 190 310",
        "shell input tap 210 310",
    ]


@pytest.mark.asyncio
async def test_find_element_and_tap_by_text():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    element = await helpers.find_element("Login", "text")
    assert (element.x, element.y) == (200, 225)

    await helpers.tap_by_text("Login", tolerance=0)
    commands = _commands(ctrl)
    assert commands[-3:] == [
        "shell uiautomator dump /sdcard/window_dump.xml",
        "shell cat /sdcard/window_dump.xml",
        "shell input tap 200 225",
    ]


@pytest.mark.asyncio
async def test_every_query_dumps_fresh():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    await helpers.exists("Login")
    await helpers.exists_by_xpath("//node[@text='Login']")

    assert _commands(ctrl).count("shell uiautomator dump /sdcard/window_dump.xml") == 2


@pytest.mark.asyncio
async def test_exists_swallows_adb_errors():
    helpers, _ = _helpers(_FakeController(fail_on=("shell uiautomator",)))
    assert await helpers.exists("Login") is False
    assert await helpers.exists_by_xpath("//node") is False


@pytest.mark.asyncio
async def test_tap_by_xpath_propagates_not_found():
    helpers, _ = _helpers(_FakeController())
    with pytest.raises(ElementNotFoundError):
        await helpers.tap_by_xpath("//node[@text='Logout']")


@pytest.mark.asyncio
async def test_wait_for_element_times_out():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    with pytest.raises(ElementNotFoundError, match="after 1000ms"):
        await helpers.wait_for_element("Logout", "text", timeout=1000)
    # 500ms 间隔 -> 最多 3 次检查
    assert _commands(ctrl).count("shell uiautomator dump /sdcard/window_dump.xml") == 3


@pytest.mark.asyncio
async def test_wait_for_text_and_get_text():
    helpers, _ = _helpers(_FakeController())
    assert await helpers.wait_for_text("Login", timeout=500) is True
    assert await helpers.get_element_text("login", "id") == "Login"
    assert await helpers.get_element_text("missing", "id") == ""
    assert await helpers.get_text_by_xpath("//node[@class='android.widget.Button']") == "Login"


@pytest.mark.asyncio
async def test_type_escapes_whitespace_and_quotes():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    await helpers.type("it's a test")

    assert _commands(ctrl) == ["shell input text 'it'\\''s%sa%stest'"]
    assert escape_input_text("a\tb") == "a%sb"


@pytest.mark.asyncio
async def test_type_single_quote_stays_balanced():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    await helpers.type("'")

    command = _commands(ctrl)[0]
    assert command == "shell input text ''\\'''"
    # 反斜杠之外的单引号必须成对出现，shell 才不会报未闭合
    assert command.replace("\\'", "").count("'") % 2 == 0
    assert shlex.split(command) == ["shell", "input", "text", "'"]


@pytest.mark.asyncio
async def test_press_key_and_app_commands():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)

    await helpers.press_key("back")
    await helpers.launch_app("com.twitter.android")
    await helpers.kill_app("com.twitter.android")

    assert _commands(ctrl) == [
        "shell input keyevent 4",
        "shell monkey -p com.twitter.android -c android.intent.category.LAUNCHER 1",
        "shell am force-stop com.twitter.android",
    ]
    with pytest.raises(ValueError):
        await helpers.press_key("VOLUME_UP")


@pytest.mark.asyncio
async def test_screen_size_defaults_when_unparseable():
    helpers, _ = _helpers(_FakeController(screen="error: closed"))
    assert await helpers.get_screen_size() == {"width": 360, "height": 640}

    helpers, _ = _helpers(_FakeController(screen="Physical size: 1080x1920\nOverride size: 720x1280\n"))
    assert await helpers.get_screen_size() == {"width": 720, "height": 1280}


@pytest.mark.asyncio
async def test_scroll_down_uses_live_screen():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)
    await helpers.scroll_down()
    assert _commands(ctrl)[-1] == "shell input swipe 540 1872 540 744 500"


@pytest.mark.asyncio
async def test_adb_failure_is_logged_and_raised():
    helpers, logs = _helpers(_FakeController(fail_on=("shell input swipe",)))
    with pytest.raises(AdbError):
        await helpers.swipe(1, 2, 3, 4)
    assert any("Swipe failed" in line for line in logs)


@pytest.mark.asyncio
async def test_adb_shell_prefixes_shell():
    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl)
    await helpers.adb_shell("getprop ro.product.model")
    assert _commands(ctrl) == ["shell getprop ro.product.model"]


@pytest.mark.asyncio
async def test_check_connection_never_raises():
    helpers, _ = _helpers(_FakeController())
    assert await helpers.check_connection() is True

    helpers, _ = _helpers(_FakeController(fail_on=("shell echo",)))
    assert await helpers.check_connection() is False


@pytest.mark.asyncio
async def test_reconnect_updates_serial():
    class _Resolver:
        async def reconnect(self, session, log=None):
            session.device_serial = "127.0.0.1:5555"
            return session

    ctrl = _FakeController()
    helpers, _ = _helpers(ctrl, resolver=_Resolver())

    assert await helpers.reconnect() is True
    await helpers.press_key("HOME")
    assert ctrl.calls[-1] == ("127.0.0.1:5555", "shell input keyevent 3")


def test_accounts_from_mapping_and_list():
    helpers, _ = _helpers(metadata={"accounts": {"twitter": {"username": "alice"}}})
    assert helpers.get_account("Twitter") == {"platform": "twitter", "username": "alice"}
    assert helpers.get_account("facebook") is None

    helpers, _ = _helpers(metadata={"accounts": [{"platform": "x", "username": "bob"}, "junk"]})
    assert helpers.get_all_accounts() == [{"platform": "x", "username": "bob"}]


def test_user_log_prefix():
    helpers, logs = _helpers()
    helpers.log("hello")
    assert logs == ["[User Script] hello"]
