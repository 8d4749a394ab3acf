from typing import Iterable, List

from sqlalchemy import delete

from .base import BaseRepository
from ..models import DraftChunk, SceneFrame


class SceneFrameRepository(BaseRepository[SceneFrame]):
    model = SceneFrame

    async def replace_for_chapter(self, chapter_id: str, frames: List[SceneFrame]) -> List[SceneFrame]:
        """
        替换章节的全部场景计划

        重新生成章节时旧场景及其草稿（外键级联）一并清除，
        保证同一章节只存在一套场景编号。
        """
        await self.session.execute(delete(DraftChunk).where(DraftChunk.chapter_id == chapter_id))
        await self.session.execute(delete(SceneFrame).where(SceneFrame.chapter_id == chapter_id))
        return await self.bulk_add(frames)

    async def list_by_chapter(self, chapter_id: str) -> Iterable[SceneFrame]:
        return await self.list(filters={"chapter_id": chapter_id}, order_by="scene_index")


class DraftChunkRepository(BaseRepository[DraftChunk]):
    model = DraftChunk

    async def list_by_chapter(self, chapter_id: str) -> Iterable[DraftChunk]:
        return await self.list(filters={"chapter_id": chapter_id}, order_by="created_at")
