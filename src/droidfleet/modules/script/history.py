"""
执行历史

每次任务结束后把结果写入 profile.metadata：
- execution_history: 最新在前，最多 settings.history_limit 条
- last_log / last_execution: 最近一次执行

写入失败只记日志，不影响任务本身的结果。
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ...core.config import settings
from ...core.constants import LOG_RULE, TaskStatus
from ...core.logger import logger
from ...core.timeutils import format_local, iso, utcnow
from ..profiles.manager import ProfileManager
from .types import DirectScriptTask


def format_full_log(task: DirectScriptTask) -> str:
    ok = task.status == TaskStatus.COMPLETED
    header = f"{'[OK]' if ok else '[FAILED]'} Script Execution - {format_local(task.completed_at or utcnow())}"
    lines = [header, LOG_RULE, *task.logs, LOG_RULE, f"Status: {task.status.value.upper()}"]
    if task.error:
        lines.append(f"Error: {task.error}")
    return "\n".join(lines)


def build_entry(task: DirectScriptTask) -> Dict[str, Any]:
    return {
        "task_id": task.id,
        "status": task.status.value,
        "timestamp": iso(task.completed_at or utcnow()),
        "started_at": iso(task.started_at),
        "completed_at": iso(task.completed_at),
        "duration_ms": task.duration_ms,
        "logs": list(task.logs),
        "error": task.error,
        "full_log": format_full_log(task),
    }


class ExecutionHistoryStore:
    def __init__(self, profiles: ProfileManager, limit: Optional[int] = None) -> None:
        self.profiles = profiles
        self.limit = limit or settings.history_limit
        self._log = logger.bind(module="ExecutionHistoryStore")

    async def record(self, task: DirectScriptTask) -> Optional[Dict[str, Any]]:
        try:
            profile = await self.profiles.get_profile(task.profile_id)
            if profile is None:
                self._log.warning(f"Profile {task.profile_id} vanished, history for {task.id} dropped")
                return None

            entry = build_entry(task)
            history = [entry, *self._existing(profile.metadata)][: self.limit]
            await self.profiles.update_profile(
                task.profile_id,
                {
                    "metadata": {
                        "execution_history": history,
                        "last_log": entry["full_log"],
                        "last_execution": {
                            "task_id": task.id,
                            "status": entry["status"],
                            "timestamp": entry["timestamp"],
                            "result": _jsonable(task.result),
                            "error": task.error,
                        },
                    }
                },
                merge_metadata=True,
            )
            return entry
        except Exception as e:
            self._log.error(f"Failed to record execution history for task {task.id}: {e}")
            return None

    async def get_history(self, profile_id: int) -> List[Dict[str, Any]]:
        profile = await self.profiles.get_profile(profile_id)
        if profile is None:
            return []
        return self._existing(profile.metadata)

    @staticmethod
    def _existing(metadata: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        history = (metadata or {}).get("execution_history") or []
        return [h for h in history if isinstance(h, dict)] if isinstance(history, list) else []


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return _jsonable(value.to_dict())
    return repr(value)
