"""
章节数据访问层

包含 ChapterRepository 与 ChapterOutlineRepository。
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select

from .base import BaseRepository
from ..models import Chapter, ChapterOutline


class ChapterRepository(BaseRepository[Chapter]):
    """章节Repository，封装章节相关的数据库操作"""

    model = Chapter

    async def get_by_id(self, chapter_id: str) -> Optional[Chapter]:
        return await self.get(id=chapter_id)

    async def get_in_project(self, project_id: str, chapter_id: str) -> Optional[Chapter]:
        """获取属于指定项目的章节，跨项目访问返回None"""
        return await self.get(id=chapter_id, project_id=project_id)

    async def get_previous(self, chapter: Chapter) -> Optional[Chapter]:
        """
        获取同一项目中紧邻的上一章（按 order_index）

        Args:
            chapter: 当前章节

        Returns:
            上一章实例，当前为第一章时返回None
        """
        stmt = (
            select(Chapter)
            .where(
                Chapter.project_id == chapter.project_id,
                Chapter.order_index < chapter.order_index,
            )
            .order_by(Chapter.order_index.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_by_volume(self, volume_id: str) -> Iterable[Chapter]:
        return await self.list(filters={"volume_id": volume_id}, order_by="order_index")

    async def list_by_project(self, project_id: str) -> Iterable[Chapter]:
        return await self.list(filters={"project_id": project_id}, order_by="order_index")

    async def save_generated_content(
        self,
        chapter: Chapter,
        *,
        content: str,
        word_count: int,
        status: str,
        generated_at: datetime,
    ) -> Chapter:
        """写入拼接后的章节正文（空字符串也会覆盖旧内容）"""
        chapter.content = content
        chapter.word_count = word_count
        chapter.status = status
        chapter.generated_at = generated_at
        await self.session.flush()
        return chapter


class ChapterOutlineRepository(BaseRepository[ChapterOutline]):
    model = ChapterOutline

    async def get_by_chapter(self, chapter_id: str) -> Optional[ChapterOutline]:
        return await self.get(chapter_id=chapter_id)
