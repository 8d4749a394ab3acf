"""
写作相关路由模块

- chapter_generation.py: 章节生成（同步 / SSE 流式）
"""

from fastapi import APIRouter

from .chapter_generation import router as chapter_generation_router

# 创建writer总路由器（prefix在主路由器中设置）
router = APIRouter(tags=["Writer"])

router.include_router(chapter_generation_router)

__all__ = ["router"]
