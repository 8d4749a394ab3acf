"""
依赖注入模块

应用启动时由 build_services() 组装一份服务容器挂到 app.state，
路由通过下面的依赖函数取用；测试可以直接传入自己组装的容器。
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings
from ..services.chapter_generation import ChapterGenerationService, GenerationOptions, SceneWriter
from ..services.execution_cache import CachePolicy, ExecutionCacheService
from ..services.llm_service import LLMService
from ..services.queue import LLMRequestQueue, SummaryQueue
from ..services.summary_service import Summarizer, build_summary_pipeline

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """进程内共享的服务实例"""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    llm_queue: LLMRequestQueue
    cache: ExecutionCacheService
    summary_queue: SummaryQueue
    generation: ChapterGenerationService


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    writer: Optional[SceneWriter] = None,
    summarizer: Optional[Summarizer] = None,
) -> AppServices:
    """
    组装服务容器

    writer / summarizer 未传入时使用同一个 LLMService，
    它和所有模型调用共享一个 LLMRequestQueue。
    """
    llm_queue = LLMRequestQueue.from_settings(settings)
    if writer is None or summarizer is None:
        llm_service = LLMService(settings, llm_queue)
        writer = writer or llm_service
        summarizer = summarizer or llm_service

    cache = ExecutionCacheService(session_factory, CachePolicy.from_settings(settings))
    summary_queue = build_summary_pipeline(session_factory, summarizer, settings)
    generation = ChapterGenerationService(
        session_factory,
        writer,
        cache,
        options=GenerationOptions.from_settings(settings),
        enqueue_summary=summary_queue.enqueue,
    )
    logger.info(
        "服务已组装: model=%s llm_max_concurrent=%d summary_workers=%d",
        settings.openai_model_name, settings.llm_max_concurrent, settings.summary_workers,
    )
    return AppServices(
        settings=settings,
        session_factory=session_factory,
        llm_queue=llm_queue,
        cache=cache,
        summary_queue=summary_queue,
        generation=generation,
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_generation_service(request: Request) -> ChapterGenerationService:
    return get_services(request).generation


def get_cache_service(request: Request) -> ExecutionCacheService:
    return get_services(request).cache


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI 依赖项：提供一个请求作用域内的数据库会话。"""
    async with get_services(request).session_factory() as session:
        yield session
