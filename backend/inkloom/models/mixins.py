"""
SQLAlchemy 模型通用字段 Mixin

收敛多个模型重复的时间戳字段定义，避免并行维护漂移。
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, mapped_column


def utc_now() -> datetime:
    """统一的 UTC 当前时间，模型默认值与仓储层的手动更新共用。"""
    return datetime.now(timezone.utc)


class TimestampsMixin:
    """通用时间戳字段（创建/更新时间）"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        nullable=False,
    )
