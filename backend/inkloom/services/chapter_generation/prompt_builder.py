"""
场景提示词构建器

把场景计划与上下文组织为分节的 Markdown 提示词，
信息按优先级排列：写作风格、当前场景、出场角色、前文衔接。
"""

from typing import Dict, List, Optional, Sequence

from ...core.constants import SceneConstants
from .context import ScenePlan

SYSTEM_PROMPT_TEMPLATE = """你是一名职业小说作者，负责按场景计划撰写章节正文。

写作要求：
- 只输出小说正文，不要输出标题、场景编号、分隔线或任何解释
- 不要复述前文，直接从衔接处继续
- 每段以完整的标点结尾，对话使用中文引号
- 计划中列出的角色必须在本场景中出场{tone_line}"""


class ScenePromptBuilder:
    """
    场景提示词构建器

    使用方式：
        builder = ScenePromptBuilder()
        system_prompt = builder.build_system_prompt(project.tone_profile)
        user_prompt = builder.build_scene_prompt(...)
    """

    def build_system_prompt(self, tone_profile: Optional[str] = None) -> str:
        tone_line = f"\n- 叙事风格：{tone_profile.strip()}" if tone_profile and tone_profile.strip() else ""
        return SYSTEM_PROMPT_TEMPLATE.format(tone_line=tone_line)

    def build_scene_prompt(
        self,
        scene: ScenePlan,
        *,
        total_scenes: int,
        chapter_title: str,
        character_notes: Dict[str, str],
        previous_content: str = "",
        prior_digest: str = "",
    ) -> str:
        """
        构建单个场景的写作提示词

        Args:
            scene: 场景计划
            total_scenes: 本章场景总数
            chapter_title: 章节标题
            character_notes: 角色名 -> 简介
            previous_content: 衔接用的前文（上一章结尾或本章已生成内容）
            prior_digest: 上一章摘要
        """
        sections = [
            self._build_task_section(scene, total_scenes, chapter_title),
            self._build_character_section(scene.focal_entities, character_notes),
            self._build_context_section(previous_content, prior_digest),
        ]
        return "\n\n".join(filter(None, sections))

    @staticmethod
    def _build_task_section(scene: ScenePlan, total_scenes: int, chapter_title: str) -> str:
        lines = [
            "## 当前场景",
            f"章节: {chapter_title}",
            f"场景 {scene.index + 1}/{total_scenes}: {scene.purpose}",
        ]
        lines.extend(f"- 节拍{i + 1}: {beat}" for i, beat in enumerate(scene.beats))

        if scene.entry_state:
            lines.append(f"开场状态: {scene.entry_state}")
        if scene.exit_state:
            lines.append(f"结束状态: {scene.exit_state}")
        if scene.stakes_delta and scene.stakes_delta != SceneConstants.PLACEHOLDER_TEXT:
            lines.append(f"张力变化: {scene.stakes_delta}")
        lines.append(f"目标字数: 约 {scene.target_words} 字")
        return "\n".join(lines)

    @staticmethod
    def _build_character_section(names: Sequence[str], notes: Dict[str, str]) -> str:
        if not names:
            return ""
        lines: List[str] = ["## 出场角色"]
        for name in names:
            note = notes.get(name)
            lines.append(f"- {name}: {note}" if note else f"- {name}")
        return "\n".join(lines)

    @staticmethod
    def _build_context_section(previous_content: str, prior_digest: str) -> str:
        lines = []
        if prior_digest:
            lines.append(f"上一章摘要: {prior_digest}")
        if previous_content:
            lines.append(f"前文结尾:\n> {previous_content}")
        if not lines:
            return ""
        return "\n".join(["## 前文衔接"] + lines)
