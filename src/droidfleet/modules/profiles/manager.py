"""
Profile 管理器

引擎只读写 profile 的 port / status / metadata 三个字段。
同步 SQLAlchemy 会话通过 run_in_db 放到 I/O 线程池执行，返回脱离会话的快照。

update_profile 是 读-改-写（非事务），同一 profile 的并发写入以最后一次为准。
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ...core.errors import ProfileNotFoundError
from ...core.logger import logger
from ...core.thread_pool import run_in_db
from ...db.base import SessionLocal
from ...db.models import Profile

_UPDATABLE = ("name", "instance_name", "port", "status")


@dataclass
class ProfileSnapshot:
    id: int
    name: str
    instance_name: str
    port: Optional[int] = None
    status: str = "inactive"
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Profile) -> "ProfileSnapshot":
        return cls(
            id=row.id,
            name=row.name,
            instance_name=row.instance_name,
            port=row.port,
            status=row.status or "inactive",
            metadata=copy.deepcopy(row.meta or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "instance_name": self.instance_name,
            "port": self.port,
            "status": self.status,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProfileManager:
    """profile 表的异步门面"""

    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory
        self._log = logger.bind(module="ProfileManager")

    # ── 同步实现（在线程池中执行） ──

    def _get_sync(self, profile_id: int) -> Optional[ProfileSnapshot]:
        with self._session_factory() as db:
            row = db.get(Profile, profile_id)
            return ProfileSnapshot.from_row(row) if row else None

    def _list_sync(self) -> List[ProfileSnapshot]:
        with self._session_factory() as db:
            rows = db.query(Profile).order_by(Profile.id).all()
            return [ProfileSnapshot.from_row(r) for r in rows]

    def _create_sync(self, name: str, instance_name: str, port: Optional[int],
                     metadata: Optional[Dict[str, Any]]) -> ProfileSnapshot:
        with self._session_factory() as db:
            row = Profile(name=name, instance_name=instance_name, port=port, meta=metadata or {})
            db.add(row)
            db.commit()
            db.refresh(row)
            return ProfileSnapshot.from_row(row)

    def _update_sync(self, profile_id: int, partial: Dict[str, Any], merge_metadata: bool) -> ProfileSnapshot:
        with self._session_factory() as db:
            row = db.get(Profile, profile_id)
            if row is None:
                raise ProfileNotFoundError(profile_id)
            for key in _UPDATABLE:
                if key in partial:
                    setattr(row, key, partial[key])
            if "metadata" in partial:
                incoming = partial["metadata"] or {}
                if merge_metadata:
                    merged = dict(row.meta or {})
                    merged.update(incoming)
                    incoming = merged
                # JSON 列需要整体替换才会被标记为脏
                row.meta = copy.deepcopy(incoming)
            db.commit()
            db.refresh(row)
            return ProfileSnapshot.from_row(row)

    # ── 异步接口 ──

    async def get_profile(self, profile_id: int) -> Optional[ProfileSnapshot]:
        return await run_in_db(self._get_sync, profile_id)

    async def require_profile(self, profile_id: int) -> ProfileSnapshot:
        profile = await self.get_profile(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile

    async def list_profiles(self) -> List[ProfileSnapshot]:
        return await run_in_db(self._list_sync)

    async def create_profile(
        self,
        name: str,
        instance_name: str,
        port: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProfileSnapshot:
        profile = await run_in_db(self._create_sync, name, instance_name, port, metadata)
        self._log.info(f"Profile created: id={profile.id} instance={instance_name}")
        return profile

    async def update_profile(
        self, profile_id: int, partial: Dict[str, Any], merge_metadata: bool = False
    ) -> ProfileSnapshot:
        """部分更新；metadata 默认整体替换，merge_metadata=True 时按顶层 key 合并"""
        return await run_in_db(self._update_sync, profile_id, partial, merge_metadata)


profile_manager = ProfileManager()
