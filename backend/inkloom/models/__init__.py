"""集中导出 ORM 模型，确保 SQLAlchemy 元数据在初始化时被正确加载。"""

from .cache import CachedExecution
from .novel import Chapter, ChapterOutline, Character, NovelProject, Volume
from .scene import DraftChunk, SceneFrame
from .summary import FailedSummaryJob, SummaryDigest

__all__ = [
    "CachedExecution",
    "Chapter",
    "ChapterOutline",
    "Character",
    "DraftChunk",
    "FailedSummaryJob",
    "NovelProject",
    "SceneFrame",
    "SummaryDigest",
    "Volume",
]
