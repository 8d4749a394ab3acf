"""
章节生成路由

同步接口跑完整个工作流后返回汇总结果；流式接口把工作流事件逐条写成 SSE。
"""

import logging
from contextlib import aclosing

from fastapi import APIRouter, Depends, Request

from ....core.dependencies import get_generation_service
from ....schemas.generation import ChapterGenerationResponse, GenerateChapterRequest
from ....services.chapter_generation import ChapterGenerationService
from ....utils.sse_helpers import create_sse_response

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/chapters/generate", response_model=ChapterGenerationResponse)
async def generate_chapter(
    request: GenerateChapterRequest,
    service: ChapterGenerationService = Depends(get_generation_service),
) -> ChapterGenerationResponse:
    """生成章节正文（非流式），会话级错误由全局异常处理器转换为对应状态码"""
    logger.info("收到章节生成请求: project_id=%s chapter_id=%s", request.project_id, request.chapter_id)
    result = await service.generate(request.project_id, request.chapter_id)
    return ChapterGenerationResponse.model_validate(result)


@router.post("/chapters/generate-stream")
async def generate_chapter_stream(
    request: GenerateChapterRequest,
    http_request: Request,
    service: ChapterGenerationService = Depends(get_generation_service),
):
    """
    流式生成章节正文（SSE）

    事件顺序见 services.chapter_generation.events；流在 completed 或 error 之后结束。
    客户端断开时输出流被关闭，进行中的场景被放弃，已保存的场景按部分完成保留。
    """
    logger.info("收到章节流式生成请求: project_id=%s chapter_id=%s", request.project_id, request.chapter_id)
    workflow = service.create_workflow(request.project_id, request.chapter_id)

    async def event_generator():
        async with aclosing(workflow.run()) as events:
            async for event in events:
                yield event.to_sse()
                if not event.kind.is_terminal and await http_request.is_disconnected():
                    workflow.cancel()

    return create_sse_response(event_generator())
