from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ..core.config import settings


def build_engine(database_uri: str, *, echo: bool = False) -> AsyncEngine:
    """根据不同数据库驱动调整连接池参数并创建异步引擎"""
    is_sqlite = make_url(database_uri).get_backend_name() == "sqlite"

    engine_kwargs = {"echo": echo}
    if is_sqlite:
        # SQLite 场景下禁用连接池并放宽线程检查，避免多协程读写冲突
        # timeout=30 增加锁等待时间，避免 "database is locked" 错误
        engine_kwargs.update(
            pool_pre_ping=False,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=NullPool,
        )
    else:
        engine_kwargs.update(pool_pre_ping=True, pool_recycle=3600)

    async_engine = create_async_engine(database_uri, **engine_kwargs)

    if is_sqlite:
        @event.listens_for(async_engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """在每个SQLite连接建立时启用外键约束和WAL模式"""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            # WAL模式允许生成会话写入时，缓存统计与摘要任务并发读取
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return async_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # 禁用 expire_on_commit 方便提交后继续读取模型对象
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine = build_engine(settings.sqlalchemy_database_uri, echo=settings.debug)

# 统一的 Session 工厂
AsyncSessionLocal = build_session_factory(engine)
