"""
Web API模块
"""
from fastapi import FastAPI
from .routers import profiles, scripts


def register_routers(app: FastAPI):
    """注册所有路由"""
    app.include_router(scripts.router)
    app.include_router(profiles.router)


__all__ = ["register_routers"]
