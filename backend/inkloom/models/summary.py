from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import Base
from .mixins import TimestampsMixin, utc_now
from .novel import BIGINT_PK_TYPE, LONG_TEXT_TYPE


class SummaryDigest(TimestampsMixin, Base):
    """滚动摘要（章节/卷/项目三级），每个目标仅保留一份，重算即整体覆盖。"""

    __tablename__ = "summary_digests"
    __table_args__ = (
        UniqueConstraint("target_id", "target_type", name="uq_digest_target"),
    )

    id: Mapped[int] = mapped_column(BIGINT_PK_TYPE, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    target_id: Mapped[str] = mapped_column(String(36), nullable=False)
    target_type: Mapped[str] = mapped_column(String(16), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content: Mapped[str] = mapped_column(LONG_TEXT_TYPE, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class FailedSummaryJob(Base):
    """重试耗尽后停放的摘要任务，等待人工处理。"""

    __tablename__ = "failed_summary_jobs"

    id: Mapped[int] = mapped_column(BIGINT_PK_TYPE, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    target_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(36))
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    failed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
