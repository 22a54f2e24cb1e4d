"""
异常定义
"""


class DroidfleetError(RuntimeError):
    """Base class for engine errors."""


class AdbError(DroidfleetError):
    """An adb invocation failed or could not be started."""


class LDConsoleError(DroidfleetError):
    """ldconsole could not be executed or returned an error."""


class DeviceResolutionError(DroidfleetError):
    """The ADB port or serial for an instance could not be resolved."""


class DeviceNotReadyError(DroidfleetError):
    """The device did not finish booting within the allotted time."""


class ElementNotFoundError(DroidfleetError):
    """No UI element matched a selector or XPath query."""


class ProfileNotFoundError(DroidfleetError):
    def __init__(self, profile_id) -> None:
        super().__init__(f"Profile {profile_id} not found")
        self.profile_id = profile_id


class ScriptSyntaxError(DroidfleetError):
    """Submitted script text does not compile."""


class ScriptTimeoutError(DroidfleetError):
    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Script timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class CaptchaSolveError(DroidfleetError):
    """Captcha provider rejected a request or timed out."""
