"""
结构化输出校验

对章节/场景计划列表逐项检查字段，产出带路径的违规项。
章节计划额外要求 requiredEntities 与 stakesDelta。
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List

from .schemas import (
    CoherenceViolation,
    EmptyArrayViolation,
    InvalidFormatViolation,
    MissingFieldViolation,
    PlanKind,
    Severity,
    Violation,
)

logger = logging.getLogger(__name__)

INDEX_FIELDS = ("orderIndex", "volumeIndex")


def is_blank(value: Any) -> bool:
    """None、False、0、空串与纯空白串视为缺失"""
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (int, float)):
        return value == 0
    return False


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class PlanValidator:
    """计划列表校验器"""

    def validate(self, items: List[Dict[str, Any]], kind: PlanKind) -> List[Violation]:
        prefix = kind.value
        violations: List[Violation] = []

        for index, item in enumerate(items):
            path = f"{prefix}[{index}]"

            for field in ("title", "oneLiner"):
                if is_blank(item.get(field)):
                    violations.append(MissingFieldViolation(
                        message=f"缺少字段 {field}", severity=Severity.HIGH, path=f"{path}.{field}",
                    ))

            beats = item.get("beats")
            if beats is None:
                violations.append(MissingFieldViolation(
                    message="缺少节拍 beats", severity=Severity.HIGH, path=f"{path}.beats",
                ))
            elif not isinstance(beats, list):
                violations.append(InvalidFormatViolation(
                    message="beats 必须是数组", severity=Severity.LOW, path=f"{path}.beats",
                ))
            elif not beats:
                violations.append(EmptyArrayViolation(
                    message="beats 不能为空", severity=Severity.MEDIUM, path=f"{path}.beats",
                ))

            entities = item.get("requiredEntities")
            if kind is PlanKind.CHAPTERS:
                if entities is None:
                    violations.append(MissingFieldViolation(
                        message="缺少必出实体 requiredEntities", severity=Severity.MEDIUM,
                        path=f"{path}.requiredEntities",
                    ))
                if is_blank(item.get("stakesDelta")):
                    violations.append(MissingFieldViolation(
                        message="缺少张力变化 stakesDelta", severity=Severity.MEDIUM,
                        path=f"{path}.stakesDelta",
                    ))
            if entities is not None and not isinstance(entities, list):
                violations.append(InvalidFormatViolation(
                    message="requiredEntities 必须是数组", severity=Severity.LOW,
                    path=f"{path}.requiredEntities",
                ))

            for field in INDEX_FIELDS:
                if field in item and not is_number(item[field]):
                    violations.append(InvalidFormatViolation(
                        message=f"{field} 必须是整数", severity=Severity.LOW, path=f"{path}.{field}",
                    ))

        violations.extend(self._check_duplicate_order(items, prefix))

        if violations:
            logger.debug("计划校验发现 %d 个问题: kind=%s", len(violations), prefix)
        return violations

    @staticmethod
    def _check_duplicate_order(items: List[Dict[str, Any]], prefix: str) -> List[Violation]:
        positions: Dict[Any, List[int]] = defaultdict(list)
        for index, item in enumerate(items):
            order = item.get("orderIndex")
            if is_number(order):
                positions[order].append(index)

        return [
            CoherenceViolation(
                message=f"orderIndex {order} 重复出现在第 {', '.join(str(i) for i in indexes)} 项",
                severity=Severity.MEDIUM,
                path=f"{prefix}[{indexes[1]}].orderIndex",
            )
            for order, indexes in positions.items()
            if len(indexes) > 1
        ]
