"""数据访问层：每个聚合一个 Repository，统一继承 BaseRepository。"""

from .base import BaseRepository
from .cached_execution_repository import CachedExecutionRepository
from .chapter_repository import ChapterOutlineRepository, ChapterRepository
from .novel_repository import CharacterRepository, NovelRepository, VolumeRepository
from .scene_repository import DraftChunkRepository, SceneFrameRepository
from .summary_repository import FailedSummaryJobRepository, SummaryDigestRepository

__all__ = [
    "BaseRepository",
    "CachedExecutionRepository",
    "ChapterOutlineRepository",
    "ChapterRepository",
    "CharacterRepository",
    "DraftChunkRepository",
    "FailedSummaryJobRepository",
    "NovelRepository",
    "SceneFrameRepository",
    "SummaryDigestRepository",
    "VolumeRepository",
]
