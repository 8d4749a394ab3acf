from typing import Iterable, List, Optional

from sqlalchemy import select

from .base import BaseRepository
from ..models import Character, NovelProject, Volume


class NovelRepository(BaseRepository[NovelProject]):
    model = NovelProject

    async def get_by_id(self, project_id: str) -> Optional[NovelProject]:
        return await self.get(id=project_id)


class VolumeRepository(BaseRepository[Volume]):
    model = Volume

    async def get_by_id(self, volume_id: str) -> Optional[Volume]:
        return await self.get(id=volume_id)

    async def list_by_project(self, project_id: str) -> Iterable[Volume]:
        return await self.list(filters={"project_id": project_id}, order_by="order_index")


class CharacterRepository(BaseRepository[Character]):
    model = Character

    async def list_by_names(self, project_id: str, names: List[str]) -> List[Character]:
        """按名称批量获取角色，结果顺序与 names 保持一致，缺失的名称直接跳过。"""
        if not names:
            return []
        stmt = select(Character).where(
            Character.project_id == project_id,
            Character.name.in_(names),
        )
        result = await self.session.execute(stmt)
        by_name = {character.name: character for character in result.scalars().all()}
        return [by_name[name] for name in names if name in by_name]
