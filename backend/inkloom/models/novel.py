from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.mysql import LONGTEXT
from sqlalchemy.orm import Mapped, mapped_column

from ..core.constants import ChapterStatus
from ..db.base import Base
from .mixins import TimestampsMixin

# 自定义列类型：兼容跨数据库环境
BIGINT_PK_TYPE = BigInteger().with_variant(Integer, "sqlite")
LONG_TEXT_TYPE = Text().with_variant(LONGTEXT, "mysql")


def new_uuid() -> str:
    return str(uuid.uuid4())


class NovelProject(TimestampsMixin, Base):
    """小说项目主表，仅存放生成引擎需要的轻量级元数据。"""

    __tablename__ = "novel_projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    tone_profile: Mapped[Optional[str]] = mapped_column(Text, doc="叙事风格描述，注入场景提示词")


class Volume(Base):
    """分卷，用于卷级摘要的聚合。"""

    __tablename__ = "volumes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    project_id: Mapped[str] = mapped_column(ForeignKey("novel_projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0)


class Chapter(TimestampsMixin, Base):
    """章节正文，由场景草稿拼接而成。"""

    __tablename__ = "chapters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    project_id: Mapped[str] = mapped_column(ForeignKey("novel_projects.id", ondelete="CASCADE"), nullable=False, index=True)
    volume_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("volumes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    content: Mapped[Optional[str]] = mapped_column(LONG_TEXT_TYPE)
    word_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(32), default=ChapterStatus.NOT_GENERATED.value)
    generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class ChapterOutline(Base):
    """章节结构化大纲（节拍、必出实体、出入场状态、张力变化）。"""

    __tablename__ = "chapter_outlines"

    chapter_id: Mapped[str] = mapped_column(
        ForeignKey("chapters.id", ondelete="CASCADE"), primary_key=True
    )
    title: Mapped[Optional[str]] = mapped_column(String(255))
    one_liner: Mapped[Optional[str]] = mapped_column(Text)
    beats: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    required_entities: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    entry_state: Mapped[Optional[str]] = mapped_column(Text)
    exit_state: Mapped[Optional[str]] = mapped_column(Text)
    stakes_delta: Mapped[Optional[str]] = mapped_column(Text)


class Character(Base):
    """角色信息，为必出实体提供描述。"""

    __tablename__ = "characters"
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_character_project_name"),
    )

    id: Mapped[int] = mapped_column(BIGINT_PK_TYPE, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("novel_projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Optional[str]] = mapped_column(String(64))
    short_motivation: Mapped[Optional[str]] = mapped_column(Text)
    personality: Mapped[Optional[str]] = mapped_column(Text)
