"""Direct mobile script execution engine"""
from .sandbox import ScriptSandbox, compile_script, sanitize_script
from .service import DirectScriptService, direct_script_service
from .types import DeviceSession, DirectScriptTask, UIElement

__all__ = [
    "DirectScriptService",
    "direct_script_service",
    "DirectScriptTask",
    "DeviceSession",
    "UIElement",
    "ScriptSandbox",
    "compile_script",
    "sanitize_script",
]
