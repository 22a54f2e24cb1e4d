"""
DirectScriptService: 脚本任务队列 + 调度

- queue_script 入队（先清掉该 profile 已结束的旧任务），立即返回任务
- process_queue 并发启动所有可运行的 pending 任务
- 同一 profile 同时最多一个运行中的任务，其余 pending 等它结束后再启动
- 每个任务：校验脚本 -> 解析设备会话 -> 构造 helpers/human/cloudflare -> 执行 -> 写历史

任务只保存在内存中，进程重启即丢失；持久的记录在执行历史里。
"""
from __future__ import annotations

import asyncio
import functools
import random
import string
import traceback
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ...core.config import settings
from ...core.constants import ProfileStatus, TaskStatus
from ...core.errors import ScriptTimeoutError
from ...core.logger import get_profile_logger, logger
from ...core.timeutils import clock_stamp, epoch_ms, iso, utcnow
from ..emu.async_controller import AsyncLDPlayerController
from ..emu.controller import ControllerConfig, LDPlayerController
from ..profiles.manager import ProfileManager, profile_manager
from ..realtime.broadcaster import LogBroadcaster, broadcaster as default_broadcaster
from .captcha import CaptchaSolver
from .cloudflare import ChallengeHandler
from .helpers import DeviceHelpers
from .history import ExecutionHistoryStore
from .human import HumanBehavior
from .sandbox import ScriptSandbox
from .session import DeviceSessionResolver
from .types import DirectScriptTask

_ID_ALPHABET = string.digits + string.ascii_lowercase

LogFn = Callable[[str], None]


def new_task_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"direct_script_{epoch_ms()}_{suffix}"


def default_controller() -> AsyncLDPlayerController:
    cfg = ControllerConfig(
        adb_path=settings.adb_path,
        ldconsole_path=settings.ldconsole_path,
        host=settings.adb_host,
        command_timeout=settings.adb_command_timeout,
    )
    return AsyncLDPlayerController(LDPlayerController(cfg))


class DirectScriptService:
    def __init__(
        self,
        controller: Optional[AsyncLDPlayerController] = None,
        profiles: Optional[ProfileManager] = None,
        broadcaster: Optional[LogBroadcaster] = None,
        sandbox: Optional[ScriptSandbox] = None,
        solver: Optional[CaptchaSolver] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.controller = controller or default_controller()
        self.profiles = profiles or profile_manager
        self.broadcaster = broadcaster or default_broadcaster
        self.sandbox = sandbox or ScriptSandbox()
        self.solver = solver
        self.resolver = DeviceSessionResolver(self.controller, self.profiles)
        self.history = ExecutionHistoryStore(self.profiles)
        self._sleep = sleep

        self._tasks: Dict[str, DirectScriptTask] = {}
        self._running: Dict[str, asyncio.Task] = {}
        # profile_id -> 占用该 profile 的任务 id，任务协程真正结束后才释放
        self._busy_profiles: Dict[int, str] = {}
        self._log = logger.bind(module="DirectScriptService")

    # ── 入队 / 调度 ──

    async def queue_script(
        self, script_code: str, profile_id: int, timeout_ms: Optional[int] = None
    ) -> DirectScriptTask:
        purged = self._purge_finished(profile_id)
        if purged:
            self._log.debug(f"Purged {purged} finished task(s) of profile {profile_id}")

        task = DirectScriptTask(
            id=new_task_id(),
            profile_id=profile_id,
            script_code=script_code,
            timeout_ms=timeout_ms if timeout_ms and timeout_ms > 0 else None,
        )
        self._tasks[task.id] = task
        self._task_logger(task)(f"Script queued at {iso(task.created_at)}")
        self._log.info(f"Queued script task {task.id} for profile {profile_id}")

        self.process_queue()
        return task

    def process_queue(self) -> int:
        """Start every pending task whose profile is idle. Returns how many were started."""
        started = 0
        for task in list(self._tasks.values()):
            if task.status != TaskStatus.PENDING or task.id in self._running:
                continue
            if task.profile_id in self._busy_profiles:
                continue
            self._busy_profiles[task.profile_id] = task.id
            handle = asyncio.create_task(self._execute(task), name=task.id)
            handle.add_done_callback(functools.partial(self._release, task))
            self._running[task.id] = handle
            started += 1
        if started:
            self._log.info(f"Started {started} task(s), running={len(self._running)}")
        return started

    def _purge_finished(self, profile_id: int) -> int:
        stale = [t.id for t in self._tasks.values() if t.profile_id == profile_id and t.is_terminal]
        for task_id in stale:
            self._tasks.pop(task_id, None)
        return len(stale)

    # ── 执行 ──

    def _task_logger(self, task: DirectScriptTask) -> LogFn:
        plog = get_profile_logger(task.profile_id)

        def log(message: Any) -> None:
            now = utcnow()
            text = str(message)
            task.logs.append(f"[{clock_stamp(now)}] {text}")
            plog.info(f"[{task.id}] {text}")
            self.broadcaster.broadcast("profile", task.profile_id, text, iso(now))

        return log

    async def _execute(self, task: DirectScriptTask) -> None:
        log = self._task_logger(task)
        task.status = TaskStatus.RUNNING
        task.started_at = utcnow()
        log(f"Script execution started at {iso(task.started_at)}")

        try:
            coro = self._run_script(task, log)
            if task.timeout_ms:
                try:
                    result = await asyncio.wait_for(coro, task.timeout_ms / 1000.0)
                except asyncio.TimeoutError:
                    raise ScriptTimeoutError(task.timeout_ms) from None
            else:
                result = await coro
        except asyncio.CancelledError:
            self._finish(task, log, error="Task cancelled")
            raise
        except Exception as e:
            self._finish(task, log, error=str(e) or type(e).__name__)
            log(traceback.format_exc().rstrip())
            self._log.warning(f"Task {task.id} failed: {task.error}")
        else:
            task.result = result
            self._finish(task, log)
            self._log.info(f"Task {task.id} completed")

        await self.history.record(task)

    def _release(self, task: DirectScriptTask, handle: asyncio.Task) -> None:
        """任务协程结束（含启动前被取消）后释放 profile 并继续调度"""
        if self._running.get(task.id) is handle:
            del self._running[task.id]
        if self._busy_profiles.get(task.profile_id) == task.id:
            del self._busy_profiles[task.profile_id]
        if not task.is_terminal:
            task.status = TaskStatus.FAILED
            task.error = "Task cancelled"
            task.completed_at = utcnow()
        task.done.set()
        if self._tasks:
            self.process_queue()

    def _finish(self, task: DirectScriptTask, log: LogFn, error: Optional[str] = None) -> None:
        task.completed_at = utcnow()
        if error is None:
            task.status = TaskStatus.COMPLETED
            log(f"Script completed at {iso(task.completed_at)}")
        else:
            task.status = TaskStatus.FAILED
            task.error = error
            log(f"Script failed at {iso(task.completed_at)}: {error}")

    async def _run_script(self, task: DirectScriptTask, log: LogFn) -> Any:
        # 先校验语法：语法错误不应触发任何设备操作
        script_fn = self.sandbox.prepare(task.script_code)
        log(f"Script validated ({len(task.script_code)} characters)")

        profile = await self.profiles.require_profile(task.profile_id)
        previous_status = await self._set_status(task.profile_id, ProfileStatus.RUNNING.value)
        try:
            session = await self.resolver.resolve(profile, log)
            log(f"Device session ready: port={session.actual_port} serial={session.device_serial}")

            helpers = DeviceHelpers(
                self.controller, session, profile, log, resolver=self.resolver, sleep=self._sleep
            )
            human = HumanBehavior(helpers, log, sleep=self._sleep)
            cloudflare = ChallengeHandler(helpers, self.solver, log)

            log("Executing user script...")
            return await script_fn(helpers, human, cloudflare, helpers.log, profile)
        finally:
            restored = previous_status
            if not restored or restored == ProfileStatus.RUNNING.value:
                restored = ProfileStatus.ACTIVE.value
            await self._set_status(task.profile_id, restored)

    async def _set_status(self, profile_id: int, status: str) -> Optional[str]:
        """更新 profile 状态，返回更新前的状态；失败只记日志"""
        try:
            before = await self.profiles.get_profile(profile_id)
            await self.profiles.update_profile(profile_id, {"status": status})
            return before.status if before else None
        except Exception as e:
            self._log.warning(f"Failed to set profile {profile_id} status to {status}: {e}")
            return None

    # ── 查询 / 管理 ──

    def get_task(self, task_id: str) -> Optional[DirectScriptTask]:
        return self._tasks.get(task_id)

    def get_all_tasks(self) -> List[DirectScriptTask]:
        return list(self._tasks.values())

    def get_tasks_for_profile(self, profile_id: int) -> List[DirectScriptTask]:
        return [t for t in self._tasks.values() if t.profile_id == profile_id]

    def running_count(self) -> int:
        return len(self._running)

    async def wait_for_task(self, task_id: str, timeout: Optional[float] = None) -> Optional[DirectScriptTask]:
        """等待任务进入终态；timeout 单位为秒，超时抛 asyncio.TimeoutError"""
        task = self._tasks.get(task_id)
        if task is None:
            return None
        await asyncio.wait_for(task.done.wait(), timeout)
        return task

    async def get_history(self, profile_id: int) -> List[Dict[str, Any]]:
        return await self.history.get_history(profile_id)

    def clear_completed_tasks(self) -> int:
        done = [t.id for t in self._tasks.values() if t.is_terminal]
        for task_id in done:
            self._tasks.pop(task_id, None)
        self._log.info(f"Cleared {len(done)} finished task(s)")
        return len(done)

    def clear_all_tasks(self) -> int:
        """清空队列并取消所有运行中的任务（崩溃恢复 / 重启时使用）

        被取消的任务仍占用各自的 profile，直到状态恢复完成、协程真正退出。
        """
        count = len(self._tasks)
        for handle in list(self._running.values()):
            handle.cancel()
        for task in self._tasks.values():
            if task.status == TaskStatus.PENDING and task.id not in self._running:
                task.status = TaskStatus.FAILED
                task.error = "Task cancelled"
                task.completed_at = utcnow()
                task.done.set()
        self._tasks.clear()
        self._running.clear()
        self._log.info(f"Cleared all {count} task(s)")
        return count

    async def stop(self) -> None:
        handles = list(self._running.values())
        self.clear_all_tasks()
        if handles:
            await asyncio.gather(*handles, return_exceptions=True)


direct_script_service = DirectScriptService()
