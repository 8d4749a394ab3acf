"""结构化输出校验、自动修复与场景正文规则检查。"""

from .prose_rules import ProseRuleChecker, RuleCheckResult, clean_prose
from .repair import RepairEngine
from .schemas import (
    CoherenceViolation,
    EmptyArrayViolation,
    InvalidFormatViolation,
    MissingFieldViolation,
    PlanKind,
    RepairAction,
    RepairResult,
    Severity,
    Violation,
)
from .validator import PlanValidator

__all__ = [
    "CoherenceViolation",
    "EmptyArrayViolation",
    "InvalidFormatViolation",
    "MissingFieldViolation",
    "PlanKind",
    "PlanValidator",
    "ProseRuleChecker",
    "RepairAction",
    "RepairEngine",
    "RepairResult",
    "RuleCheckResult",
    "Severity",
    "Violation",
    "clean_prose",
]
