"""
执行缓存服务

以签名为键的内容寻址存储：签名 -> 已生成的场景正文 + 质量分 + 复用次数。
服务实例在进程内只创建一份并注入到编排器，所有会话共享。

并发约定：
- lookup 只读，不加锁，不修改任何状态
- record_hit / record_miss 在同一签名上串行（KeyedLockRegistry），
  复用次数的自增由单条 SQL 完成，跨进程也不会丢失更新
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...core.config import Settings
from ...exceptions import ResourceNotFoundError
from ...models import CachedExecution
from ...models.mixins import utc_now
from ...repositories import CachedExecutionRepository
from .locks import KeyedLockRegistry
from .signature import content_hash

logger = logging.getLogger(__name__)


class CacheOutcome(str, Enum):
    """record_miss 的写入结果"""
    CREATED = "created"    # 新建条目
    REPLACED = "replaced"  # 新结果质量更高，覆盖旧条目
    KEPT = "kept"          # 旧条目质量不低于新结果，保持不变


@dataclass(frozen=True)
class CachePolicy:
    min_hit_quality: int = 70
    low_quality_threshold: int = 50
    retention_days: int = 7

    @classmethod
    def from_settings(cls, settings: Settings) -> "CachePolicy":
        return cls(
            min_hit_quality=settings.cache_min_hit_quality,
            low_quality_threshold=settings.cache_low_quality_threshold,
            retention_days=settings.cache_retention_days,
        )


@dataclass(frozen=True)
class CacheEntry:
    """缓存条目的只读快照，脱离数据库会话后仍可安全使用"""

    signature: str
    content: str
    content_hash: str
    quality_score: int
    reuse_count: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_model(cls, row: CachedExecution) -> "CacheEntry":
        return cls(
            signature=row.signature,
            content=row.content,
            content_hash=row.content_hash,
            quality_score=row.quality_score,
            reuse_count=row.reuse_count,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class ExecutionCacheService:
    """执行缓存：查询、命中计数、写入（高质量覆盖）、统计与清理。"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: CachePolicy = CachePolicy(),
        locks: Optional[KeyedLockRegistry] = None,
    ):
        self.session_factory = session_factory
        self.policy = policy
        self._locks = locks or KeyedLockRegistry()

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------
    async def lookup(self, signature: str) -> Optional[CacheEntry]:
        """按签名读取条目，不修改任何状态"""
        async with self.session_factory() as session:
            row = await CachedExecutionRepository(session).get_by_signature(signature)
            return CacheEntry.from_model(row) if row is not None else None

    def is_usable(self, entry: Optional[CacheEntry]) -> bool:
        """条目存在且质量分达到命中门槛"""
        return entry is not None and entry.quality_score >= self.policy.min_hit_quality

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------
    async def record_hit(self, signature: str) -> CacheEntry:
        """
        记录一次命中：复用次数 +1 并刷新更新时间

        Raises:
            ResourceNotFoundError: 签名不存在
        """
        async with self._locks.hold(signature):
            async with self.session_factory() as session:
                repo = CachedExecutionRepository(session)
                updated = await repo.increment_reuse(signature)
                if not updated:
                    await session.rollback()
                    raise ResourceNotFoundError("缓存条目", signature)
                await session.commit()
                row = await repo.get_by_signature(signature)
                entry = CacheEntry.from_model(row)

        logger.info(
            "缓存命中: signature=%s quality=%d reuse=%d",
            signature[:12], entry.quality_score, entry.reuse_count,
        )
        return entry

    async def record_miss(self, signature: str, content: str, quality_score: int) -> CacheOutcome:
        """
        记录一次未命中后的生成结果

        - 签名不存在：新建条目，复用次数为0
        - 已存在且旧质量分更低：覆盖内容与质量分，复用次数保持不变
        - 已存在且旧质量分不低于新结果：保持不变
        """
        quality_score = max(0, min(100, int(quality_score)))
        digest = content_hash(content)

        async with self._locks.hold(signature):
            async with self.session_factory() as session:
                repo = CachedExecutionRepository(session)
                existing = await repo.get_by_signature(signature)

                if existing is None:
                    try:
                        await repo.add(
                            CachedExecution(
                                signature=signature,
                                content=content,
                                content_hash=digest,
                                quality_score=quality_score,
                                reuse_count=0,
                            )
                        )
                        await session.commit()
                        outcome = CacheOutcome.CREATED
                    except IntegrityError:
                        # 其他进程抢先写入了同一签名，退化为覆盖判断
                        await session.rollback()
                        outcome = await self._replace_if_better(repo, signature, content, digest, quality_score)
                        await session.commit()
                elif existing.quality_score < quality_score:
                    outcome = await self._replace_if_better(repo, signature, content, digest, quality_score)
                    await session.commit()
                else:
                    outcome = CacheOutcome.KEPT

        logger.info(
            "缓存写入: signature=%s quality=%d outcome=%s",
            signature[:12], quality_score, outcome.value,
        )
        return outcome

    @staticmethod
    async def _replace_if_better(
        repo: CachedExecutionRepository,
        signature: str,
        content: str,
        digest: str,
        quality_score: int,
    ) -> CacheOutcome:
        updated = await repo.replace_content(
            signature, content=content, content_hash=digest, quality_score=quality_score
        )
        return CacheOutcome.REPLACED if updated else CacheOutcome.KEPT

    # ------------------------------------------------------------------
    # 统计与清理
    # ------------------------------------------------------------------
    async def stats(self) -> Dict[str, Any]:
        """
        汇总统计（允许读取近似快照）

        每个签名都源于一次未命中，每次复用都是一次命中，
        因此 hitRate = totalReuse / (totalReuse + totalSignatures)。
        """
        async with self.session_factory() as session:
            aggregate = await CachedExecutionRepository(session).aggregate()

        total = aggregate["total"]
        total_reuse = aggregate["total_reuse"]
        lookups = total + total_reuse
        return {
            "totalSignatures": total,
            "avgQualityScore": round(aggregate["avg_quality"], 2),
            "avgReuseCount": round(aggregate["avg_reuse"], 2),
            "hitRate": round(total_reuse / lookups, 4) if lookups else 0.0,
            "totalReuse": total_reuse,
        }

    async def evict(self, now: Optional[datetime] = None) -> int:
        """删除低质量、从未复用且超过保留期的条目，返回删除数量"""
        now = now or utc_now()
        cutoff = now - timedelta(days=self.policy.retention_days)
        async with self.session_factory() as session:
            removed = await CachedExecutionRepository(session).delete_stale(
                quality_below=self.policy.low_quality_threshold,
                updated_before=cutoff,
            )
            await session.commit()

        logger.info(
            "缓存清理完成: removed=%d threshold=%d cutoff=%s",
            removed, self.policy.low_quality_threshold, cutoff.isoformat(),
        )
        return removed
