"""
摘要流水线

章节 → 卷 → 项目三级滚动摘要。章节生成完成后入队章节摘要任务，
章节摘要写入后自动入队上一级摘要，直到项目摘要为止。

每个任务在独立的数据库会话中执行；摘要写入是整体覆盖（upsert），
因此重复投递的任务是安全的。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings
from ..core.constants import LLMConstants, SummaryConstants, SummaryScope
from ..exceptions import LLMServiceError
from ..repositories import (
    ChapterRepository,
    FailedSummaryJobRepository,
    SummaryDigestRepository,
    VolumeRepository,
)
from .queue import SummaryJob, SummaryQueue
from ..utils.json_utils import remove_think_tags
from ..utils.text_utils import truncate

logger = logging.getLogger(__name__)


CHAPTER_SUMMARY_PROMPT = (
    "你是一名小说编辑。请用不超过200字概括下面这一章的核心情节，"
    "保留关键人物、冲突与结局状态，只输出摘要正文。"
)
VOLUME_SUMMARY_PROMPT = (
    "你是一名小说编辑。下面是同一卷中各章的摘要，请整合为300到500字的卷摘要，"
    "突出主线推进与人物关系变化，只输出摘要正文。"
)
PROJECT_SUMMARY_PROMPT = (
    "你是一名小说编辑。下面是整部作品各部分的摘要，请整合为500到800字的全书摘要，"
    "交代主线、主要人物与当前进度，只输出摘要正文。"
)


class Summarizer(Protocol):
    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: Optional[int] = None,
        timeout: float = ...,
    ) -> str: ...


@dataclass(frozen=True)
class RetryPolicy:
    """有上限的指数退避"""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.summary_max_attempts,
            initial_delay=settings.summary_retry_initial_delay,
            max_delay=settings.summary_retry_max_delay,
            multiplier=settings.summary_retry_multiplier,
        )

    def delay_for(self, failed_attempt: int) -> float:
        """第 failed_attempt 次失败后的等待秒数（从1开始计数）"""
        return min(self.initial_delay * self.multiplier ** (failed_attempt - 1), self.max_delay)


def _result(success: bool, summary_length: int = 0, **extra: Any) -> Dict[str, Any]:
    return {"success": success, "summaryLength": summary_length, **extra}


class SummaryWorker:
    """
    摘要任务处理器

    process() 执行一次任务；run() 在 process() 外层包裹重试与失败停放，
    是摘要队列实际调用的入口。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        summarizer: Summarizer,
        *,
        retry_policy: RetryPolicy = RetryPolicy(),
        temperature: float = 0.15,
        timeout: float = LLMConstants.DEFAULT_TIMEOUT,
        enqueue: Optional[Callable[[SummaryJob], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.summarizer = summarizer
        self.retry_policy = retry_policy
        self.temperature = temperature
        self.timeout = timeout
        self.enqueue = enqueue
        self._sleep = sleep

    async def run(self, job: SummaryJob) -> Dict[str, Any]:
        """带重试的任务执行，重试耗尽后写入 FailedSummaryJob"""
        max_attempts = self.retry_policy.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                return await self.process(job)
            except Exception as exc:
                if attempt < max_attempts:
                    delay = self.retry_policy.delay_for(attempt)
                    logger.warning(
                        "摘要任务失败，%.1f 秒后重试: job=%s scope=%s target=%s attempt=%d/%d error=%s",
                        delay, job.job_id, job.scope.value, job.target_id, attempt, max_attempts, exc,
                    )
                    await self._sleep(delay)
                    continue

                logger.error(
                    "摘要任务重试耗尽，已停放: job=%s scope=%s target=%s attempts=%d error=%s",
                    job.job_id, job.scope.value, job.target_id, attempt, exc,
                )
                await self._park(job, attempts=attempt, error=exc)
                return _result(False, parked=True)

        return _result(False)

    async def process(self, job: SummaryJob) -> Dict[str, Any]:
        """执行一次摘要任务；内部错误直接抛出，由 run() 负责重试"""
        handlers = {
            SummaryScope.CHAPTER: self._summarize_chapter,
            SummaryScope.VOLUME: self._summarize_volume,
            SummaryScope.PROJECT: self._summarize_project,
        }
        async with self.session_factory() as session:
            result, follow_up = await handlers[job.scope](session, job)
            await session.commit()

        if follow_up is not None and self.enqueue is not None:
            self.enqueue(follow_up)
        return result

    # ------------------------------------------------------------------
    # 三级摘要
    # ------------------------------------------------------------------
    async def _summarize_chapter(self, session: AsyncSession, job: SummaryJob):
        chapter = await ChapterRepository(session).get_by_id(job.target_id)
        if chapter is None or not (chapter.content or "").strip():
            logger.warning("章节不存在或正文为空，跳过摘要: chapter=%s", job.target_id)
            return _result(False, skipped=True), None

        source = truncate(chapter.content, SummaryConstants.CHAPTER_SOURCE_CHARS, suffix="")
        summary = await self._summarize(CHAPTER_SUMMARY_PROMPT, f"章节标题：{chapter.title}\n\n{source}")
        # upsert 冲突时会回滚会话并使已加载的对象过期，先取出后续要用的字段
        chapter_id, volume_id, project_id = chapter.id, chapter.volume_id, chapter.project_id
        await SummaryDigestRepository(session).upsert(
            project_id=project_id,
            target_type=SummaryScope.CHAPTER.value,
            target_id=chapter_id,
            level=SummaryScope.CHAPTER.level,
            content=summary,
        )
        logger.info("章节摘要已更新: chapter=%s length=%d", chapter_id, len(summary))

        if volume_id:
            follow_up = SummaryJob(SummaryScope.VOLUME, volume_id, project_id=project_id)
        else:
            follow_up = SummaryJob(SummaryScope.PROJECT, project_id, project_id=project_id)
        return _result(True, len(summary)), follow_up

    async def _summarize_volume(self, session: AsyncSession, job: SummaryJob):
        volume = await VolumeRepository(session).get_by_id(job.target_id)
        if volume is None:
            logger.warning("卷不存在，跳过摘要: volume=%s", job.target_id)
            return _result(False, skipped=True), None

        chapters = list(await ChapterRepository(session).list_by_volume(volume.id))
        digest_repo = SummaryDigestRepository(session)
        digests = await digest_repo.list_for_targets(
            SummaryScope.CHAPTER.value, [chapter.id for chapter in chapters]
        )
        if not digests:
            logger.warning("卷内没有可用的章节摘要，跳过: volume=%s", volume.id)
            return _result(False, skipped=True), None

        titles = {chapter.id: chapter.title for chapter in chapters}
        source = self._join_digests(digests, titles)
        summary = await self._summarize(VOLUME_SUMMARY_PROMPT, f"卷名：{volume.title}\n\n{source}")
        volume_id, project_id = volume.id, volume.project_id
        await digest_repo.upsert(
            project_id=project_id,
            target_type=SummaryScope.VOLUME.value,
            target_id=volume_id,
            level=SummaryScope.VOLUME.level,
            content=summary,
        )
        logger.info("卷摘要已更新: volume=%s chapters=%d length=%d", volume_id, len(digests), len(summary))

        follow_up = SummaryJob(SummaryScope.PROJECT, project_id, project_id=project_id)
        return _result(True, len(summary)), follow_up

    async def _summarize_project(self, session: AsyncSession, job: SummaryJob):
        project_id = job.target_id
        digest_repo = SummaryDigestRepository(session)

        volumes = list(await VolumeRepository(session).list_by_project(project_id))
        if volumes:
            titles = {volume.id: volume.title for volume in volumes}
            digests = await digest_repo.list_for_targets(SummaryScope.VOLUME.value, list(titles))
        else:
            chapters = list(await ChapterRepository(session).list_by_project(project_id))
            titles = {chapter.id: chapter.title for chapter in chapters}
            digests = await digest_repo.list_for_targets(SummaryScope.CHAPTER.value, list(titles))

        if not digests:
            logger.warning("项目没有可用的下级摘要，跳过: project=%s", project_id)
            return _result(False, skipped=True), None

        summary = await self._summarize(PROJECT_SUMMARY_PROMPT, self._join_digests(digests, titles))
        await digest_repo.upsert(
            project_id=project_id,
            target_type=SummaryScope.PROJECT.value,
            target_id=project_id,
            level=SummaryScope.PROJECT.level,
            content=summary,
        )
        logger.info("项目摘要已更新: project=%s sources=%d length=%d", project_id, len(digests), len(summary))
        return _result(True, len(summary)), None

    # ------------------------------------------------------------------
    # 辅助
    # ------------------------------------------------------------------
    @staticmethod
    def _join_digests(digests: List[Any], titles: Dict[str, str]) -> str:
        return "\n\n".join(
            f"【{titles.get(digest.target_id, digest.target_id)}】\n{digest.content}" for digest in digests
        )

    async def _summarize(self, system_prompt: str, source: str) -> str:
        raw = await self.summarizer.complete_text(
            system_prompt,
            source,
            temperature=self.temperature,
            max_tokens=LLMConstants.SUMMARY_MAX_TOKENS,
            timeout=self.timeout,
        )
        summary = remove_think_tags(raw or "").strip()
        if not summary:
            raise LLMServiceError("摘要内容为空")
        return summary

    async def _park(self, job: SummaryJob, *, attempts: int, error: BaseException) -> None:
        async with self.session_factory() as session:
            await FailedSummaryJobRepository(session).park(
                job_id=job.job_id,
                kind=job.scope.value,
                target_id=job.target_id,
                project_id=job.project_id,
                attempts=attempts,
                last_error=f"{type(error).__name__}: {error}",
                enqueued_at=job.enqueued_at,
            )
            await session.commit()


def build_summary_pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    summarizer: Summarizer,
    settings: Settings,
) -> SummaryQueue:
    """组装摘要处理器与队列，处理器产生的上级任务回投到同一队列"""
    worker = SummaryWorker(
        session_factory,
        summarizer,
        retry_policy=RetryPolicy.from_settings(settings),
        temperature=settings.llm_temp_summary,
        timeout=settings.llm_summary_timeout,
    )
    queue = SummaryQueue(worker.run, workers=settings.summary_workers)
    worker.enqueue = queue.enqueue
    return queue


__all__ = [
    "RetryPolicy",
    "SummaryWorker",
    "build_summary_pipeline",
]
