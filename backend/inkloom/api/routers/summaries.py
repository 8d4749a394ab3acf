"""
摘要流水线运维路由

手动触发重新摘要，查看重试耗尽后停放的任务。
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.constants import SummaryScope
from ...core.dependencies import AppServices, get_services, get_session
from ...exceptions import InvalidParameterError, ResourceNotFoundError
from ...repositories import ChapterRepository, FailedSummaryJobRepository, NovelRepository, VolumeRepository
from ...schemas.summary import FailedSummaryJobList, FailedSummaryJobSchema, ResummarizeResponse
from ...services.queue import SummaryJob

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/summaries", tags=["摘要流水线"])


@router.post("/{target_type}/{target_id}/resummarize", response_model=ResummarizeResponse)
async def resummarize(
    target_type: str,
    target_id: str,
    services: AppServices = Depends(get_services),
    session: AsyncSession = Depends(get_session),
) -> ResummarizeResponse:
    """为章节/卷/项目重新入队一次摘要任务，完成后照常向上级传递"""
    try:
        scope = SummaryScope(target_type)
    except ValueError:
        raise InvalidParameterError("摘要类型只能是 chapter、volume 或 project", "target_type") from None

    if scope is SummaryScope.CHAPTER:
        target = await ChapterRepository(session).get_by_id(target_id)
    elif scope is SummaryScope.VOLUME:
        target = await VolumeRepository(session).get_by_id(target_id)
    else:
        target = await NovelRepository(session).get_by_id(target_id)
    if target is None:
        raise ResourceNotFoundError("摘要目标", f"{target_type}/{target_id}")

    project_id = target_id if scope is SummaryScope.PROJECT else target.project_id
    job = SummaryJob(scope, target_id, project_id=project_id)
    services.summary_queue.enqueue(job)
    logger.info("手动触发摘要: scope=%s target=%s job=%s", scope.value, target_id, job.job_id)

    return ResummarizeResponse(
        job_id=job.job_id,
        target_type=scope.value,
        target_id=target_id,
        queued=services.summary_queue.get_status()["queued"],
    )


@router.get("/failed", response_model=FailedSummaryJobList)
async def list_failed_jobs(session: AsyncSession = Depends(get_session)) -> FailedSummaryJobList:
    jobs = await FailedSummaryJobRepository(session).list_recent()
    return FailedSummaryJobList(jobs=[FailedSummaryJobSchema.model_validate(job) for job in jobs])
