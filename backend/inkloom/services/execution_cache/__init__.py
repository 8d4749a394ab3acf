"""执行缓存：签名计算、质量评分与缓存服务。"""

from .locks import KeyedLockRegistry
from .scoring import QualityScorePolicy
from .service import CacheEntry, CacheOutcome, CachePolicy, ExecutionCacheService
from .signature import SignatureInput, SignatureRules, compute_signature, content_hash

__all__ = [
    "CacheEntry",
    "CacheOutcome",
    "CachePolicy",
    "ExecutionCacheService",
    "KeyedLockRegistry",
    "QualityScorePolicy",
    "SignatureInput",
    "SignatureRules",
    "compute_signature",
    "content_hash",
]
