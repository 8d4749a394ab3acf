"""
场景拆分

把章节大纲的节拍按复杂度贪心分组为有序的场景计划。拆分是确定性的：
同一份大纲、同一组参数总是得到完全相同的场景序列。
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from .context import ScenePlan

logger = logging.getLogger(__name__)

HIGH_COMPLEXITY_KEYWORDS = ("战斗", "冲突", "对抗", "交手")
LOW_COMPLEXITY_KEYWORDS = ("对话", "交谈", "过渡", "准备")


@dataclass(frozen=True)
class DecompositionPolicy:
    words_per_scene: int = 800
    min_words: int = 800
    max_words: int = 3000
    max_complexity: int = 3
    max_beats: int = 2

    @classmethod
    def from_settings(cls, settings) -> "DecompositionPolicy":
        return cls(
            words_per_scene=settings.scene_words_per_scene,
            min_words=settings.scene_min_words,
            max_words=settings.scene_max_words,
            max_complexity=settings.scene_max_complexity,
            max_beats=settings.scene_max_beats,
        )


def beat_complexity(beat: str) -> int:
    """冲突类节拍为3，对话/过渡类为1，其余为2"""
    if any(keyword in beat for keyword in HIGH_COMPLEXITY_KEYWORDS):
        return 3
    if any(keyword in beat for keyword in LOW_COMPLEXITY_KEYWORDS):
        return 1
    return 2


class SceneDecomposer:
    def __init__(self, policy: DecompositionPolicy = DecompositionPolicy()):
        self.policy = policy

    def decompose(
        self,
        beats: Sequence[str],
        *,
        required_entities: Sequence[str] = (),
        entry_state: str = "",
        exit_state: str = "",
        stakes_delta: str = "",
    ) -> List[ScenePlan]:
        groups = self._group_beats([str(beat) for beat in beats if str(beat).strip()])
        entities = [str(name) for name in required_entities if str(name).strip()]
        total = len(groups)

        scenes = []
        for index, group in enumerate(groups):
            complexities = [beat_complexity(beat) for beat in group]
            scenes.append(ScenePlan(
                index=index,
                purpose=self._purpose(group),
                beats=tuple(group),
                focal_entities=self._focal_entities(entities, index),
                entry_state=entry_state if index == 0 and entry_state else f"承接场景{index}",
                exit_state=exit_state if index == total - 1 and exit_state else f"引出场景{index + 2}",
                stakes_delta=stakes_delta if index == total - 1 else "",
                target_words=self._target_words(len(group), sum(complexities) / len(complexities)),
            ))

        logger.debug("场景拆分完成: beats=%d scenes=%d", sum(len(g) for g in groups), total)
        return scenes

    def _group_beats(self, beats: List[str]) -> List[List[str]]:
        groups: List[List[str]] = []
        current: List[str] = []
        current_complexity = 0

        for beat in beats:
            complexity = beat_complexity(beat)
            fits = (
                current_complexity + complexity <= self.policy.max_complexity
                and len(current) < self.policy.max_beats
            )
            if current and not fits:
                groups.append(current)
                current, current_complexity = [], 0
            current.append(beat)
            current_complexity += complexity

        if current:
            groups.append(current)
        return groups

    @staticmethod
    def _purpose(group: List[str]) -> str:
        if len(group) == 1:
            return group[0]
        return f"主要：{group[0]}；同时：{'、'.join(group[1:])}"

    @staticmethod
    def _focal_entities(entities: List[str], index: int) -> tuple:
        if not entities:
            return ()
        start = (index * 2) % len(entities)
        picked = [entities[(start + offset) % len(entities)] for offset in range(min(2, len(entities)))]
        return tuple(picked)

    def _target_words(self, beat_count: int, avg_complexity: float) -> int:
        raw = round(self.policy.words_per_scene * beat_count * (avg_complexity / 2))
        return max(self.policy.min_words, min(self.policy.max_words, int(raw)))
