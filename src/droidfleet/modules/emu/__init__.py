"""LDPlayer / ADB 设备控制"""
from .adb import Adb
from .async_controller import AsyncLDPlayerController
from .controller import ControllerConfig, LDPlayerController
from .ldconsole import LDConsole

__all__ = ["Adb", "LDConsole", "ControllerConfig", "LDPlayerController", "AsyncLDPlayerController"]
