"""
执行缓存运维路由
"""

import logging

from fastapi import APIRouter, Depends

from ...core.dependencies import get_cache_service
from ...schemas.cache import CacheEvictResponse, CacheStatsResponse
from ...services.execution_cache import ExecutionCacheService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache", tags=["执行缓存"])


@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache: ExecutionCacheService = Depends(get_cache_service)) -> CacheStatsResponse:
    """缓存条目数、平均质量分、平均复用次数与命中率"""
    return CacheStatsResponse.model_validate(await cache.stats())


@router.post("/evict", response_model=CacheEvictResponse)
async def evict_cache(cache: ExecutionCacheService = Depends(get_cache_service)) -> CacheEvictResponse:
    """清理低质量、从未复用且超过保留期的条目"""
    removed = await cache.evict()
    return CacheEvictResponse(removed=removed)
