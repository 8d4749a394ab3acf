from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .base import BaseRepository
from ..models import FailedSummaryJob, SummaryDigest
from ..models.mixins import utc_now


class SummaryDigestRepository(BaseRepository[SummaryDigest]):
    model = SummaryDigest

    async def get_for_target(self, target_type: str, target_id: str) -> Optional[SummaryDigest]:
        return await self.get(target_type=target_type, target_id=target_id)

    async def list_for_targets(self, target_type: str, target_ids: List[str]) -> List[SummaryDigest]:
        """按目标ID批量读取摘要，结果顺序与 target_ids 一致"""
        if not target_ids:
            return []
        stmt = select(SummaryDigest).where(
            SummaryDigest.target_type == target_type,
            SummaryDigest.target_id.in_(target_ids),
        )
        result = await self.session.execute(stmt)
        by_target = {digest.target_id: digest for digest in result.scalars().all()}
        return [by_target[target_id] for target_id in target_ids if target_id in by_target]

    async def upsert(
        self,
        *,
        project_id: str,
        target_type: str,
        target_id: str,
        level: int,
        content: str,
    ) -> SummaryDigest:
        """
        写入摘要：不存在则创建，存在则整体覆盖内容并递增版本号

        摘要写入始终是整份替换而非增量合并，同一目标重复执行任务只会留下最后一次的结果。
        并发的重复任务抢先插入同一目标时，会回滚当前会话中未提交的改动，改为覆盖对方写入的行。
        """
        digest = await self.get_for_target(target_type, target_id)
        if digest is None:
            try:
                return await self.add(SummaryDigest(
                    project_id=project_id,
                    target_type=target_type,
                    target_id=target_id,
                    level=level,
                    content=content,
                    version=1,
                    is_stale=False,
                ))
            except IntegrityError:
                await self.session.rollback()
                digest = await self.get_for_target(target_type, target_id)
                if digest is None:
                    raise

        digest.content = content
        digest.level = level
        digest.version = (digest.version or 0) + 1
        digest.is_stale = False
        digest.updated_at = utc_now()
        await self.session.flush()
        return digest


class FailedSummaryJobRepository(BaseRepository[FailedSummaryJob]):
    model = FailedSummaryJob

    async def park(
        self,
        *,
        job_id: str,
        kind: str,
        target_id: str,
        project_id: Optional[str],
        attempts: int,
        last_error: str,
        enqueued_at: datetime,
    ) -> FailedSummaryJob:
        return await self.add(
            FailedSummaryJob(
                job_id=job_id,
                kind=kind,
                target_id=target_id,
                project_id=project_id,
                attempts=attempts,
                last_error=last_error,
                enqueued_at=enqueued_at,
            )
        )

    async def list_recent(self) -> Iterable[FailedSummaryJob]:
        return await self.list(order_by="failed_at", order_desc=True)
