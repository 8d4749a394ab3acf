"""
执行缓存相关的Pydantic数据模型
"""

from pydantic import Field

from .base import CamelModel


class CacheStatsResponse(CamelModel):
    total_signatures: int = Field(..., description="缓存条目总数")
    avg_quality_score: float = Field(..., description="平均质量分")
    avg_reuse_count: float = Field(..., description="平均复用次数")
    hit_rate: float = Field(..., description="命中率 = 复用总数 / (复用总数 + 条目数)")
    total_reuse: int = Field(..., description="复用总次数")


class CacheEvictResponse(CamelModel):
    removed: int = Field(..., description="本次清理删除的条目数")
