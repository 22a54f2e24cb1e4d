"""
核心配置模块
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """系统配置"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # 数据库
    database_url: str = Field(default="sqlite:///./data.db")

    # 模拟器 / ADB
    adb_path: str = Field(default="adb")
    ldconsole_path: str = Field(default="ldconsole")
    adb_host: str = Field(default="127.0.0.1")
    adb_command_timeout: float = Field(default=30.0)
    device_ready_timeout_ms: int = Field(default=60000)
    ui_dump_path: str = Field(default="/sdcard/window_dump.xml")

    # 脚本动作
    wait_poll_interval_ms: int = Field(default=500)
    default_tap_tolerance: int = Field(default=20)
    base_screen_width: int = Field(default=360)
    base_screen_height: int = Field(default=640)

    # 脚本沙箱
    script_restricted_builtins: bool = Field(default=True)
    script_allowed_modules: List[str] = Field(
        default=["json", "re", "math", "random", "datetime", "time", "string", "itertools", "collections"]
    )

    # 执行历史
    history_limit: int = Field(default=20)

    # 验证码
    captcha_service: str = Field(default="2captcha")
    captcha_api_key: str = Field(default="")
    captcha_timeout_sec: int = Field(default=30)

    # 线程池（0 = 自动）
    io_thread_pool_size: int = Field(default=0)

    # 实时日志
    log_buffer_size: int = Field(default=2000)

    # Web服务
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=9001)

    # 日志
    log_level: str = Field(default="INFO")
    log_path: str = Field(default="./logs")
    log_retention_days: int = Field(default=3)
    log_console_enabled: bool = Field(default=True)

    # 时区（历史记录展示）
    timezone: str = Field(default="Asia/Ho_Chi_Minh")


# 全局配置实例
settings = Settings()
