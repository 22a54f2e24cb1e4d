"""
实时日志广播器

进程内环形缓冲 + 递增游标：
- broadcast(log_type, profile_id, message, timestamp) 写入一条
- read_since(cursor, profile_id) 供仪表盘轮询增量日志
- subscribe()/unsubscribe() 给需要推送的消费者一个 asyncio.Queue
"""
from __future__ import annotations

import asyncio
import itertools
from collections import deque
from threading import Lock
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from ...core.config import settings
from ...core.logger import logger
from ...core.timeutils import iso, utcnow


class LogBroadcaster:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=maxlen or settings.log_buffer_size)
        self._seq = itertools.count(1)
        self._subscribers: Set[asyncio.Queue] = set()
        self._lock = Lock()

    def broadcast(self, log_type: str, profile_id, message: str, timestamp: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            entry = {
                "cursor": float(next(self._seq)),
                "type": log_type,
                "profile_id": str(profile_id) if profile_id is not None else None,
                "message": message,
                "timestamp": timestamp or iso(utcnow()),
            }
            self._buffer.append(entry)
            subscribers = list(self._subscribers)

        for queue in subscribers:
            try:
                queue.put_nowait(entry)
            except asyncio.QueueFull:
                logger.bind(module="LogBroadcaster").debug("Subscriber queue full, dropping log entry")
        return entry

    def read_since(self, cursor: float = 0.0, profile_id=None, limit: int = 500) -> Tuple[List[Dict[str, Any]], float]:
        """返回 cursor 之后的日志以及新的游标"""
        key = str(profile_id) if profile_id is not None else None
        with self._lock:
            items = [
                e for e in self._buffer
                if e["cursor"] > cursor and (key is None or e["profile_id"] == key)
            ]
            latest = self._buffer[-1]["cursor"] if self._buffer else cursor
        items = items[:limit]
        next_cursor = items[-1]["cursor"] if items else max(cursor, latest)
        return items, next_cursor

    def subscribe(self, maxsize: int = 1000) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.discard(queue)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()


broadcaster = LogBroadcaster()
