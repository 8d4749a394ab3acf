from typing import Any, Generic, Iterable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

ModelType = TypeVar("ModelType")


class BaseRepository(Generic[ModelType]):
    """通用仓储基类，封装常见的增删改查操作。"""

    model: type[ModelType]

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, **filters: Any) -> Optional[ModelType]:
        stmt = select(self.model).filter_by(**filters)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list(
        self,
        *,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        order_desc: bool = False,
    ) -> Iterable[ModelType]:
        """
        条件查询

        Args:
            filters: 过滤条件字典
            order_by: 排序字段名（可选）
            order_desc: 是否降序（默认升序）

        Returns:
            查询结果列表
        """
        stmt = select(self.model)
        if filters:
            stmt = stmt.filter_by(**filters)
        if order_by:
            field = getattr(self.model, order_by, None)
            if field is not None:
                stmt = stmt.order_by(field.desc() if order_desc else field)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def add(self, instance: ModelType) -> ModelType:
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def bulk_add(self, instances: List[ModelType]) -> List[ModelType]:
        """批量添加实例到数据库"""
        if not instances:
            return []

        self.session.add_all(instances)
        await self.session.flush()
        return instances

