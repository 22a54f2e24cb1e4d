"""
常量和枚举定义
"""
from enum import Enum


class TaskStatus(str, Enum):
    """脚本任务状态"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED)


class ProfileStatus(str, Enum):
    """Profile 状态"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    RUNNING = "running"
    SUSPENDED = "suspended"


class SelectorType(str, Enum):
    """find_element 选择器类型"""
    TEXT = "text"
    ID = "id"
    CLASS = "class"
    DESC = "desc"


class ChallengeType(str, Enum):
    """Cloudflare 挑战类型"""
    NONE = "none"
    JAVASCRIPT = "javascript"
    TURNSTILE = "turnstile"
    CAPTCHA = "captcha"
    BLOCKED = "blocked"


# Android keycodes
KEY_CODES = {
    "HOME": 3,
    "BACK": 4,
    "MENU": 82,
    "ENTER": 66,
    "DELETE": 67,
}

# 无法解析 wm size 时的默认分辨率
DEFAULT_SCREEN_SIZE = (360, 640)

# LDPlayer 常用 ADB 端口（index * 2 + 5555）
LDPLAYER_BASE_PORT = 5555
LDPLAYER_COMMON_PORTS = [5555 + i * 2 for i in range(14)]

# 宽高比差异超过该比例时对 Y 坐标做补偿
ASPECT_RATIO_TOLERANCE = 0.05

LOG_RULE = "=" * 60
