"""
API路由汇总
"""

from fastapi import APIRouter

from . import cache, queue, summaries, writer

api_router = APIRouter()

api_router.include_router(writer.router, prefix="/api/writer")
api_router.include_router(cache.router)  # 已包含/api/cache前缀
api_router.include_router(queue.router)  # 已包含/api/queue前缀
api_router.include_router(summaries.router)  # 已包含/api/summaries前缀
