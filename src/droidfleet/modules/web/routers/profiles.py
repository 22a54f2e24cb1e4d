"""
Profile 管理API
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ....core.constants import ProfileStatus
from ....core.errors import ProfileNotFoundError
from ...profiles.manager import profile_manager


router = APIRouter(prefix="/api/profiles", tags=["profiles"])


class ProfileCreate(BaseModel):
    """创建 profile"""
    name: str = Field(..., min_length=1)
    instance_name: str = Field(..., min_length=1)
    port: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProfileUpdate(BaseModel):
    """更新 profile（metadata 按顶层 key 合并）"""
    name: Optional[str] = None
    instance_name: Optional[str] = None
    port: Optional[int] = None
    status: Optional[ProfileStatus] = None
    metadata: Optional[Dict[str, Any]] = None


@router.get("")
async def list_profiles():
    profiles = await profile_manager.list_profiles()
    return [p.to_dict() for p in profiles]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_profile(body: ProfileCreate):
    profile = await profile_manager.create_profile(
        body.name, body.instance_name, port=body.port, metadata=body.metadata
    )
    return profile.to_dict()


@router.get("/{profile_id}")
async def get_profile(profile_id: int):
    profile = await profile_manager.get_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Profile {profile_id} not found")
    return profile.to_dict()


@router.put("/{profile_id}")
async def update_profile(profile_id: int, body: ProfileUpdate):
    partial = body.model_dump(exclude_unset=True)
    if "status" in partial and partial["status"] is not None:
        partial["status"] = ProfileStatus(partial["status"]).value
    try:
        profile = await profile_manager.update_profile(profile_id, partial, merge_metadata=True)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return profile.to_dict()
