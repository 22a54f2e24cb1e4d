"""
Script engine types and data structures
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ...core.constants import TERMINAL_STATUSES, TaskStatus
from ...core.timeutils import iso, utcnow


@dataclass
class Bounds:
    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def center(self) -> tuple[int, int]:
        return (self.x1 + self.x2) // 2, (self.y1 + self.y2) // 2

    def to_dict(self) -> Dict[str, int]:
        return {"x1": self.x1, "y1": self.y1, "x2": self.x2, "y2": self.y2}


@dataclass
class UIElement:
    """A node matched in a UI dump. Coordinates are the bounds midpoint."""

    x: int
    y: int
    bounds: Bounds
    text: Optional[str] = None
    resource_id: Optional[str] = None
    class_name: Optional[str] = None
    content_desc: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "bounds": self.bounds.to_dict(),
            "text": self.text,
            "resource_id": self.resource_id,
            "class_name": self.class_name,
            "content_desc": self.content_desc,
        }


@dataclass
class DeviceSession:
    actual_port: int
    device_serial: str


@dataclass
class DirectScriptTask:
    id: str
    profile_id: int
    script_code: str
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    logs: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    timeout_ms: Optional[int] = None
    done: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "profile_id": self.profile_id,
            "script_code": self.script_code,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "logs": list(self.logs),
            "created_at": iso(self.created_at),
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "timeout_ms": self.timeout_ms,
        }
