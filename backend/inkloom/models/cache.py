from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import Base
from .mixins import TimestampsMixin
from .novel import LONG_TEXT_TYPE


class CachedExecution(TimestampsMixin, Base):
    """执行缓存条目：签名 -> 已生成正文，附带质量分与复用次数。"""

    __tablename__ = "cached_executions"

    signature: Mapped[str] = mapped_column(String(64), primary_key=True)
    content: Mapped[str] = mapped_column(LONG_TEXT_TYPE, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    quality_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reuse_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
