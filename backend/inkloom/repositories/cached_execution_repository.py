from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import delete, func, select, update

from .base import BaseRepository
from ..models import CachedExecution
from ..models.mixins import utc_now


class CachedExecutionRepository(BaseRepository[CachedExecution]):
    """执行缓存条目的数据访问，所有写操作均为单条SQL，便于在单键锁内保持原子性。"""

    model = CachedExecution

    async def get_by_signature(self, signature: str) -> Optional[CachedExecution]:
        # 总是从数据库读取最新值，避免身份映射中的旧对象掩盖原子更新
        stmt = (
            select(CachedExecution)
            .where(CachedExecution.signature == signature)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def increment_reuse(self, signature: str) -> int:
        """
        原子地将复用次数加一并刷新更新时间

        使用 `reuse_count = reuse_count + 1` 由数据库完成自增，
        即使多个进程同时命中同一签名也不会丢失更新。

        Returns:
            受影响的行数（签名不存在时为0）
        """
        stmt = (
            update(CachedExecution)
            .where(CachedExecution.signature == signature)
            .values(
                reuse_count=CachedExecution.reuse_count + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def replace_content(
        self,
        signature: str,
        *,
        content: str,
        content_hash: str,
        quality_score: int,
    ) -> int:
        """以更高质量的结果覆盖已有条目，复用计数保持不变"""
        stmt = (
            update(CachedExecution)
            .where(
                CachedExecution.signature == signature,
                CachedExecution.quality_score < quality_score,
            )
            .values(
                content=content,
                content_hash=content_hash,
                quality_score=quality_score,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def aggregate(self) -> Dict[str, float]:
        """汇总条目数、平均质量分、复用总数与平均复用次数"""
        stmt = select(
            func.count(CachedExecution.signature),
            func.avg(CachedExecution.quality_score),
            func.coalesce(func.sum(CachedExecution.reuse_count), 0),
            func.avg(CachedExecution.reuse_count),
        )
        total, avg_quality, total_reuse, avg_reuse = (await self.session.execute(stmt)).one()
        return {
            "total": int(total or 0),
            "avg_quality": float(avg_quality or 0.0),
            "total_reuse": int(total_reuse or 0),
            "avg_reuse": float(avg_reuse or 0.0),
        }

    async def delete_stale(self, *, quality_below: int, updated_before: datetime) -> int:
        """删除低质量、从未复用且超过保留期的条目"""
        stmt = delete(CachedExecution).where(
            CachedExecution.quality_score < quality_below,
            CachedExecution.reuse_count == 0,
            CachedExecution.updated_at < updated_before,
        ).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        return result.rowcount
