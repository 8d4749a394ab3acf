from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import Base
from .mixins import utc_now
from .novel import LONG_TEXT_TYPE, new_uuid


class SceneFrame(Base):
    """一次生成会话拆分出的场景计划，重新生成章节时整体替换。"""

    __tablename__ = "scene_frames"
    __table_args__ = (
        UniqueConstraint("chapter_id", "scene_index", name="uq_scene_chapter_index"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    chapter_id: Mapped[str] = mapped_column(ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True)
    scene_index: Mapped[int] = mapped_column(Integer, nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    beats: Mapped[list] = mapped_column(JSON, default=list)
    focal_entities: Mapped[list] = mapped_column(JSON, default=list)
    entry_state: Mapped[Optional[str]] = mapped_column(Text)
    exit_state: Mapped[Optional[str]] = mapped_column(Text)
    stakes_delta: Mapped[Optional[str]] = mapped_column(Text)
    target_words: Mapped[int] = mapped_column(Integer, default=0)


class DraftChunk(Base):
    """场景草稿：定稿后的正文及其校验结果。"""

    __tablename__ = "draft_chunks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    scene_id: Mapped[str] = mapped_column(ForeignKey("scene_frames.id", ondelete="CASCADE"), nullable=False, index=True)
    chapter_id: Mapped[str] = mapped_column(ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True)
    content: Mapped[str] = mapped_column(LONG_TEXT_TYPE, nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, default=0)
    local_summary: Mapped[Optional[str]] = mapped_column(Text)
    signature: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    cache_hit: Mapped[bool] = mapped_column(Boolean, default=False)
    quality_score: Mapped[int] = mapped_column(Integer, default=0)
    rule_checks_passed: Mapped[bool] = mapped_column(Boolean, default=False)
    warnings: Mapped[list] = mapped_column(JSON, default=list)
    violations: Mapped[list] = mapped_column(JSON, default=list, doc="未能自动修复的结构问题")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
