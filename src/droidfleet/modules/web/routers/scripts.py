"""
脚本任务API
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ....core.logger import logger
from ...profiles.manager import profile_manager
from ...realtime.broadcaster import broadcaster
from ...script.service import direct_script_service


router = APIRouter(prefix="/api/scripts", tags=["scripts"])


class ScriptRunRequest(BaseModel):
    """提交脚本"""
    profile_id: int
    script_code: str = Field(..., min_length=1)
    timeout_ms: Optional[int] = Field(default=None, ge=1)
    wait: bool = False  # 为 True 时等待任务结束再返回
    wait_timeout_sec: float = Field(default=300.0, gt=0)


def _parse_cursor(cursor: Optional[str]) -> Optional[float]:
    if not cursor:
        return None
    try:
        return float(cursor)
    except ValueError:
        return None


def _format_cursor(cursor: float) -> str:
    return f"{cursor:.6f}"


@router.post("/run")
async def run_script(body: ScriptRunRequest):
    """
    提交脚本任务到指定 profile
    """
    profile = await profile_manager.get_profile(body.profile_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Profile {body.profile_id} not found")

    task = await direct_script_service.queue_script(body.script_code, body.profile_id, timeout_ms=body.timeout_ms)
    logger.info(f"脚本任务已提交: task={task.id} profile={body.profile_id}")

    if body.wait:
        try:
            await direct_script_service.wait_for_task(task.id, timeout=body.wait_timeout_sec)
        except asyncio.TimeoutError:
            return {"task": task.to_dict(), "waited": False}
        return {"task": task.to_dict(), "waited": True}
    return {"task": task.to_dict()}


@router.get("/tasks")
async def list_tasks():
    """
    获取内存中的全部任务
    """
    tasks = direct_script_service.get_all_tasks()
    return {"total": len(tasks), "tasks": [t.to_dict() for t in tasks]}


@router.get("/tasks/{task_id}")
async def get_task(task_id: str):
    task = direct_script_service.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="任务不存在")
    return task.to_dict()


@router.get("/profiles/{profile_id}/tasks")
async def get_profile_tasks(profile_id: int):
    tasks = direct_script_service.get_tasks_for_profile(profile_id)
    return {"total": len(tasks), "tasks": [t.to_dict() for t in tasks]}


@router.get("/profiles/{profile_id}/history")
async def get_profile_history(profile_id: int, limit: int = Query(20, ge=1, le=100)):
    """
    获取 profile 的执行历史（最新在前）
    """
    history = await direct_script_service.get_history(profile_id)
    return {"total": len(history), "history": history[:limit]}


@router.delete("/tasks/completed")
async def clear_completed_tasks():
    cleared = direct_script_service.clear_completed_tasks()
    return {"cleared": cleared}


@router.delete("/tasks")
async def clear_all_tasks():
    cleared = direct_script_service.clear_all_tasks()
    return {"cleared": cleared}


@router.get("/logs")
async def get_live_logs(
    cursor: Optional[str] = Query(None, description="上次返回的游标"),
    profile_id: Optional[int] = Query(None, description="ProfileID"),
    limit: int = Query(200, ge=1, le=1000),
):
    """
    增量拉取实时日志
    """
    items, next_cursor = broadcaster.read_since(_parse_cursor(cursor) or 0.0, profile_id=profile_id, limit=limit)
    return {"cursor": _format_cursor(next_cursor), "logs": items}
