"""
场景正文的规则检查与清洗

规则检查只做快速、确定性的判断：字数窗口、必出实体、元叙述、与前文的重复
属于错误；排版问题只记为警告。passed 表示没有任何错误。
"""

import re
from dataclasses import dataclass, field
from typing import List, Sequence

from ...utils.json_utils import remove_think_tags
from ...utils.text_utils import count_words

META_COMMENTARY_PATTERNS = [
    re.compile(r"好的[，,]\s*让我"),
    re.compile(r"让我来写"),
    re.compile(r"让我来描述"),
    re.compile(r"接下来[，,]\s*我将"),
    re.compile(r"我将会"),
    re.compile(r"我会在"),
    re.compile(r"在这个场景中[，,]\s*我"),
    re.compile(r"\[待确认\]"),
    re.compile(r"\[需要补充\]"),
    re.compile(r"\[作者注"),
]

SUMMARY_OPENING = re.compile(r"^(上文提到|之前说到|回顾一下|书接上回)")
EMPTY_PARAGRAPH_RUN = re.compile(r"\n\s*\n\s*\n")
CLOSING_PUNCTUATION = set("。！？…\"」』”")

_SCENE_MARKER_LINE = re.compile(r"^\s*【场景\s*\d+\s*/\s*\d+[^】]*】\s*$", re.MULTILINE)
_SEPARATOR_LINE = re.compile(r"^\s*\*{3,}\s*$", re.MULTILINE)
_LEADING_SCENE_TITLE = re.compile(r"\A\s*场景\s*\d+\s*[：:][^\n]*\n")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")

MIN_REPETITION_CONTEXT = 50


def clean_prose(text: str) -> str:
    """去掉推理块、场景标记行、分隔线与开头的“场景N：”标题行"""
    if not text:
        return ""
    cleaned = remove_think_tags(text)
    cleaned = _SCENE_MARKER_LINE.sub("", cleaned)
    cleaned = _SEPARATOR_LINE.sub("", cleaned)
    cleaned = _LEADING_SCENE_TITLE.sub("", cleaned)
    cleaned = _EXCESS_BLANK_LINES.sub("\n\n", cleaned)
    return cleaned.strip()


@dataclass
class RuleCheckResult:
    passed: bool
    word_count: int
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class ProseRuleChecker:
    def __init__(self, tolerance: float = 0.15):
        self.tolerance = tolerance

    def check(
        self,
        content: str,
        *,
        target_words: int,
        focal_entities: Sequence[str] = (),
        context: str = "",
    ) -> RuleCheckResult:
        errors: List[str] = []
        warnings: List[str] = []

        word_count = count_words(content)
        if target_words > 0:
            min_words = int(target_words * (1 - self.tolerance))
            max_words = int(target_words * (1 + self.tolerance))
            if word_count < min_words:
                errors.append(f"content_too_short: {word_count} 字（下限 {min_words}）")
            elif word_count > max_words:
                errors.append(f"content_too_long: {word_count} 字（上限 {max_words}）")

        missing = [name for name in focal_entities if name and name not in content]
        if missing:
            errors.append(f"missing_characters: {', '.join(missing)}")

        detected = [match.group(0) for match in (p.search(content) for p in META_COMMENTARY_PATTERNS) if match]
        if detected:
            errors.append(f"meta_commentary_detected: {'; '.join(detected)}")

        errors.extend(self._check_repetition(content, context))
        warnings.extend(self._check_formatting(content))

        return RuleCheckResult(
            passed=not errors,
            word_count=word_count,
            errors=errors,
            warnings=warnings,
        )

    @staticmethod
    def _check_repetition(content: str, context: str) -> List[str]:
        context = (context or "").strip()
        if len(context) < MIN_REPETITION_CONTEXT:
            return []

        errors = []
        clean_content = content.strip()
        if context[-50:] in clean_content[:100]:
            errors.append("content_repeats_context_end")
        if SUMMARY_OPENING.search(clean_content):
            errors.append("content_starts_with_summary")
        return errors

    @staticmethod
    def _check_formatting(content: str) -> List[str]:
        warnings = []

        empty_runs = EMPTY_PARAGRAPH_RUN.findall(content)
        if len(empty_runs) > 3:
            warnings.append(f"excessive_empty_paragraphs: {len(empty_runs)}")

        paragraphs = [p.strip() for p in re.split(r"\n+", content) if p.strip()]
        if not paragraphs:
            return warnings

        short = [p for p in paragraphs if len(p) < 10]
        if len(short) > len(paragraphs) * 0.3:
            warnings.append(f"too_many_short_paragraphs: {len(short)}/{len(paragraphs)}")

        unpunctuated = [p for p in paragraphs if p[-1] not in CLOSING_PUNCTUATION]
        if len(unpunctuated) > len(paragraphs) * 0.2:
            warnings.append(f"missing_punctuation: {len(unpunctuated)}/{len(paragraphs)}")
        return warnings
