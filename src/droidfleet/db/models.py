"""
数据库模型定义
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON
from .base import Base


class Profile(Base):
    """设备 profile 表（一个 profile 绑定一个 LDPlayer 实例）"""
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    instance_name = Column(String(255), nullable=False, index=True)
    port = Column(Integer, nullable=True)  # 最近一次解析到的 ADB 端口
    status = Column(String(20), default="inactive")  # active|inactive|running|suspended
    # "metadata" 是 declarative 保留属性名，列名保持 metadata
    meta = Column("metadata", JSON, default=dict)  # accounts / execution_history / last_log ...
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
