"""数据库模块"""
from .base import Base, engine, SessionLocal
from .models import Profile


def init_db():
    """初始化数据库"""
    Base.metadata.create_all(bind=engine)


__all__ = ["Base", "engine", "SessionLocal", "Profile", "init_db"]
