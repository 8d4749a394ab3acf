"""
确定性自动修复

按严重程度从高到低处理违规项，只尝试可自动修复的项。每个修复族都是幂等的：
先检查目标字段是否已处于修复后的状态，满足则跳过，所以对修复结果再执行一次
同样的修复不会产生新的 RepairAction。语义问题（coherence）永不自动修复。
"""

import copy
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ...core.constants import SceneConstants
from .schemas import RepairAction, RepairResult, Violation, violation_adapter
from .validator import is_blank, is_number
from ...utils.json_utils import dump_snapshot, parse_json_list

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _parse_int(value: Any) -> int:
    """取字符串开头的整数，解析失败返回0"""
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match:
            return int(match.group(1))
    return 0


class RepairEngine:
    """结构化计划列表的自动修复引擎（无状态，可在多个会话间共享）"""

    def repair(
        self,
        content: Union[str, List[Any]],
        violations: Iterable[Union[Violation, Dict[str, Any]]],
    ) -> RepairResult:
        """
        修复结构化内容

        Args:
            content: JSON 文本（允许 Markdown 代码块包裹）或已解析的计划列表
            violations: 违规项模型或等价的字典

        Returns:
            RepairResult；内容无法解析为对象列表时 success=False 且不抛出异常
        """
        items = parse_json_list(content)
        if items is None:
            logger.warning("自动修复跳过：内容无法解析为对象列表")
            return RepairResult(success=False, message="内容无法解析为结构化列表，未执行修复")

        items = copy.deepcopy(items)
        ordered = sorted(self._coerce(violations), key=lambda v: v.severity.rank, reverse=True)

        actions: List[RepairAction] = []
        for violation in ordered:
            if not violation.auto_fixable:
                continue

            before = dump_snapshot(items)
            if not self._apply(items, violation):
                continue

            action = RepairAction(
                type=violation.type,
                description=violation.message or violation.type,
                original=before,
                replacement=dump_snapshot(items),
            )
            actions.append(action)
            logger.info("自动修复: type=%s path=%s", violation.type, violation.path or "-")

        message = f"已自动修复 {len(actions)} 处问题" if actions else "没有需要自动修复的问题"
        return RepairResult(success=True, actions=actions, message=message, repaired=items)

    @staticmethod
    def _coerce(violations: Iterable[Union[Violation, Dict[str, Any]]]) -> List[Violation]:
        parsed: List[Violation] = []
        for raw in violations:
            if not isinstance(raw, dict):
                parsed.append(raw)
                continue
            try:
                parsed.append(violation_adapter.validate_python(raw))
            except ValidationError as exc:
                logger.warning("忽略无法识别的违规项: %s (%s)", raw.get("type"), exc.error_count())
        return parsed

    def _apply(self, items: List[Dict[str, Any]], violation: Violation) -> bool:
        if violation.type == "missing_field":
            return self._fix_missing_fields(items, violation.path)
        if violation.type == "empty_array":
            return self._fix_empty_arrays(items)
        if violation.type == "invalid_format":
            return self._fix_invalid_format(items)
        # coherence 交由人工审阅
        return False

    # ------------------------------------------------------------------
    # 修复族
    # ------------------------------------------------------------------
    @staticmethod
    def _fix_missing_fields(items: List[Dict[str, Any]], path: Optional[str]) -> bool:
        chapter_scoped = "chapter" in (path or "")
        modified = False
        for item in items:
            if is_blank(item.get("title")):
                item["title"] = SceneConstants.UNTITLED
                modified = True

            if is_blank(item.get("oneLiner")):
                item["oneLiner"] = item.get("title") or SceneConstants.PLACEHOLDER_TEXT
                modified = True

            if not isinstance(item.get("beats"), list):
                item["beats"] = [SceneConstants.PLACEHOLDER_TEXT]
                modified = True

            if chapter_scoped and is_blank(item.get("requiredEntities")):
                item["requiredEntities"] = []
                modified = True

            if chapter_scoped and is_blank(item.get("stakesDelta")):
                item["stakesDelta"] = SceneConstants.PLACEHOLDER_TEXT
                modified = True
        return modified

    @staticmethod
    def _fix_empty_arrays(items: List[Dict[str, Any]]) -> bool:
        # requiredEntities / themeTags 为空是合法状态，不做处理
        modified = False
        for item in items:
            if item.get("beats") == []:
                item["beats"] = [SceneConstants.PLACEHOLDER_TEXT]
                modified = True
        return modified

    @staticmethod
    def _fix_invalid_format(items: List[Dict[str, Any]]) -> bool:
        modified = False
        for item in items:
            for field in ("orderIndex", "volumeIndex"):
                if field in item and not is_number(item[field]):
                    item[field] = _parse_int(item[field])
                    modified = True

            for field in ("beats", "requiredEntities"):
                value = item.get(field)
                if not is_blank(value) and not isinstance(value, list):
                    item[field] = [value]
                    modified = True
        return modified
