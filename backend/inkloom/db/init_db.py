import logging
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine

from ..core.config import settings
from .. import models  # noqa: F401  确保所有模型注册到元数据
from .base import Base
from .session import engine as default_engine

logger = logging.getLogger(__name__)


async def init_db(engine: AsyncEngine = default_engine) -> None:
    """初始化数据库结构。"""
    _ensure_sqlite_directory(str(engine.url))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("数据库表结构已初始化: %s", engine.url.render_as_string(hide_password=True))


def _ensure_sqlite_directory(database_uri: str) -> None:
    """SQLite 采用文件数据库，首次连接前确保父目录存在。"""
    url = make_url(database_uri)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return

    db_path = Path(url.database).expanduser()
    if not db_path.is_absolute():
        db_path = (settings.storage_dir.parent / db_path).resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
