"""
章节生成服务

进程内唯一的协调者：持有模型端、执行缓存、会话登记与生成参数，
为每次请求创建独立的工作流。SSE 接口直接消费工作流的事件，
同步接口通过 generate() 收集最终结果。
"""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..execution_cache import ExecutionCacheService
from ..queue import SummaryJob
from .prompt_builder import ScenePromptBuilder
from .session_lock import ChapterSessionRegistry
from .workflow import ChapterGenerationWorkflow, GenerationOptions, SceneWriter

logger = logging.getLogger(__name__)


class ChapterGenerationService:
    """
    章节生成服务

    使用方式：
        service = ChapterGenerationService(session_factory, llm_service, cache, options=...)
        async for event in service.create_workflow(project_id, chapter_id).run():
            ...
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        writer: SceneWriter,
        cache: ExecutionCacheService,
        *,
        options: GenerationOptions = GenerationOptions(),
        registry: Optional[ChapterSessionRegistry] = None,
        enqueue_summary: Optional[Callable[[SummaryJob], None]] = None,
    ):
        self.session_factory = session_factory
        self.writer = writer
        self.cache = cache
        self.options = options
        self.registry = registry or ChapterSessionRegistry()
        self.enqueue_summary = enqueue_summary
        self.prompt_builder = ScenePromptBuilder()

    def create_workflow(self, project_id: str, chapter_id: str) -> ChapterGenerationWorkflow:
        return ChapterGenerationWorkflow(
            project_id=project_id,
            chapter_id=chapter_id,
            session_factory=self.session_factory,
            writer=self.writer,
            cache=self.cache,
            registry=self.registry,
            options=self.options,
            prompt_builder=self.prompt_builder,
            enqueue_summary=self.enqueue_summary,
        )

    async def generate(self, project_id: str, chapter_id: str) -> Dict[str, Any]:
        """
        非流式生成：跑完整个工作流后返回汇总结果

        Raises:
            工作流的会话级异常（ConcurrentGenerationError、ResourceNotFoundError 等）原样抛出
        """
        workflow = self.create_workflow(project_id, chapter_id)
        async for _ in workflow.run():
            pass

        if workflow.error is not None:
            raise workflow.error
        return workflow.session.summary()
