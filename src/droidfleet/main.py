"""
主程序入口
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .core.config import settings
from .core.logger import logger
from .core.thread_pool import device_io_pool_stats, shutdown_pools
from .db import init_db
from .modules.script.service import direct_script_service
from .modules.web import register_routers

# 创建FastAPI应用
app = FastAPI(
    title="Droidfleet 脚本执行引擎",
    description="LDPlayer 设备池的脚本调度与执行",
    version=__version__,
)

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:9000",
        "http://127.0.0.1:9000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    """应用启动事件"""
    logger.info("应用启动中...")
    init_db()
    logger.info("数据库初始化完成")

    register_routers(app)
    logger.info("路由注册完成")

    logger.info(f"应用启动完成，监听 {settings.api_host}:{settings.api_port}")


@app.on_event("shutdown")
async def shutdown():
    """应用关闭事件"""
    logger.info("应用关闭中...")
    await direct_script_service.stop()
    shutdown_pools()
    logger.info("应用关闭完成")


@app.get("/")
async def root():
    """根路径"""
    return {"message": "Droidfleet script engine API", "version": __version__}


@app.get("/health")
async def health():
    """健康检查"""
    return {
        "status": "healthy",
        "running_tasks": direct_script_service.running_count(),
        "device_pools": device_io_pool_stats(),
    }
