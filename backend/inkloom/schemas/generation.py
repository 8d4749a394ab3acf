"""
章节生成相关的Pydantic数据模型
"""

from typing import List

from pydantic import Field

from .base import CamelModel


class ScenePlanSchema(CamelModel):
    index: int
    purpose: str
    beats: List[str] = Field(default_factory=list)
    focal_entities: List[str] = Field(default_factory=list)
    entry_state: str = ""
    exit_state: str = ""
    stakes_delta: str = ""
    target_words: int = 0


class DraftSchema(CamelModel):
    id: str
    scene_index: int
    content: str
    word_count: int
    cache_hit: bool
    quality_score: int
    rule_checks_passed: bool
    warnings: List[str] = Field(default_factory=list)
    violations: List[dict] = Field(default_factory=list)


class ChapterGenerationResponse(CamelModel):
    """同步生成接口的返回结果"""
    project_id: str
    chapter_id: str
    word_count: int = Field(..., description="章节总字数")
    total_scenes: int
    successful_scenes: int
    failed_scenes: int
    cache_hits: int
    rule_checks_passed: int = Field(..., description="通过规则检查的场景数")
    total_warnings: int
    cancelled: bool = False
    scenes: List[ScenePlanSchema] = Field(default_factory=list)
    drafts: List[DraftSchema] = Field(default_factory=list)


class GenerateChapterRequest(CamelModel):
    """同步与流式生成共用的请求体"""
    project_id: str = Field(..., min_length=1)
    chapter_id: str = Field(..., min_length=1)
