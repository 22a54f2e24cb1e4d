"""
数据库基础配置
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from ..core.config import settings

_is_sqlite = settings.database_url.startswith("sqlite")

# SQLite 多任务并发:
#   - check_same_thread=False: 允许跨线程使用（run_in_db offload 必需）
#   - timeout=30: busy_timeout 30秒，避免并发写入时 "database is locked"
if _is_sqlite:
    engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
else:
    engine = create_engine(settings.database_url)


def _set_sqlite_pragma(dbapi_conn, connection_record):
    """对每个新 SQLite 连接启用 WAL 模式和优化参数。"""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


if _is_sqlite:
    event.listen(engine, "connect", _set_sqlite_pragma)

# 创建会话工厂
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# 创建基类
Base = declarative_base()
