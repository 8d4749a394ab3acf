"""
章节生成上下文

封装一次生成会话所需的数据结构：场景计划、生成参数、会话状态与草稿记录。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ...core.constants import SessionState

logger = logging.getLogger(__name__)


# 状态机允许的迁移；任何非终止状态都可以进入 ERROR
_TRANSITIONS = {
    SessionState.IDLE: {SessionState.CONNECTING},
    SessionState.CONNECTING: {SessionState.DECOMPOSING},
    SessionState.DECOMPOSING: {SessionState.SCENE_GENERATING, SessionState.PERSISTING},
    SessionState.SCENE_GENERATING: {
        SessionState.VALIDATING,
        SessionState.SCENE_GENERATING,
        SessionState.PERSISTING,
    },
    SessionState.VALIDATING: {
        SessionState.REPAIRING,
        SessionState.PERSISTING,
        SessionState.SCENE_GENERATING,
    },
    SessionState.REPAIRING: {SessionState.PERSISTING, SessionState.SCENE_GENERATING},
    SessionState.PERSISTING: {
        SessionState.SCENE_GENERATING,
        SessionState.PERSISTING,
        SessionState.COMPLETED,
    },
}


@dataclass(frozen=True)
class ScenePlan:
    """
    一个场景的生成计划

    Attributes:
        index: 场景在章节内的序号（从0开始）
        purpose: 场景目的，由所含节拍拼成
        beats: 场景覆盖的节拍，保持大纲中的顺序
        focal_entities: 场景需要出场的角色
        target_words: 目标字数
    """
    index: int
    purpose: str
    beats: Tuple[str, ...]
    focal_entities: Tuple[str, ...] = ()
    entry_state: str = ""
    exit_state: str = ""
    stakes_delta: str = ""
    target_words: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "purpose": self.purpose,
            "beats": list(self.beats),
            "focalEntities": list(self.focal_entities),
            "entryState": self.entry_state,
            "exitState": self.exit_state,
            "stakesDelta": self.stakes_delta,
            "targetWords": self.target_words,
        }


@dataclass
class DraftRecord:
    """已定稿场景的内存记录，与 DraftChunk 行一一对应"""
    id: str
    scene_index: int
    content: str
    word_count: int
    cache_hit: bool
    quality_score: int
    rule_checks_passed: bool
    warnings: List[str] = field(default_factory=list)
    violations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sceneIndex": self.scene_index,
            "content": self.content,
            "wordCount": self.word_count,
            "cacheHit": self.cache_hit,
            "qualityScore": self.quality_score,
            "ruleChecksPassed": self.rule_checks_passed,
            "warnings": list(self.warnings),
            "violations": list(self.violations),
        }


@dataclass
class GenerationSession:
    """
    单次章节生成会话的可变状态

    只由所属的工作流修改，不在会话之间共享。
    """
    project_id: str
    chapter_id: str
    state: SessionState = SessionState.IDLE
    scenes: List[ScenePlan] = field(default_factory=list)
    drafts: List[DraftRecord] = field(default_factory=list)
    current_scene: Optional[int] = None
    failed_scenes: int = 0
    cache_hits: int = 0
    rule_checks_passed: int = 0
    total_warnings: int = 0
    cancelled: bool = False

    @property
    def total_scenes(self) -> int:
        return len(self.scenes)

    @property
    def successful_scenes(self) -> int:
        return len(self.drafts)

    @property
    def word_count(self) -> int:
        return sum(draft.word_count for draft in self.drafts)

    def transition(self, target: SessionState) -> None:
        """
        迁移到新状态

        Raises:
            RuntimeError: 会话已结束或迁移不合法
        """
        if self.state.is_terminal:
            raise RuntimeError(f"会话已结束（{self.state.value}），不能再迁移到 {target.value}")
        if target is not SessionState.ERROR and target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"非法的状态迁移: {self.state.value} -> {target.value}")
        logger.debug("会话状态: chapter=%s %s -> %s", self.chapter_id, self.state.value, target.value)
        self.state = target

    def progress_at(self, scene_index: int) -> int:
        """第 scene_index 个场景开始时的进度；传入场景总数即为全部场景结束时的进度"""
        total = max(self.total_scenes, 1)
        return 10 + (scene_index * 85) // total

    def summary(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "chapterId": self.chapter_id,
            "wordCount": self.word_count,
            "totalScenes": self.total_scenes,
            "successfulScenes": self.successful_scenes,
            "failedScenes": self.failed_scenes,
            "cacheHits": self.cache_hits,
            "ruleChecksPassed": self.rule_checks_passed,
            "totalWarnings": self.total_warnings,
            "cancelled": self.cancelled,
            "scenes": [scene.to_dict() for scene in self.scenes],
            "drafts": [draft.to_dict() for draft in self.drafts],
        }
