"""
结构化校验数据模型

违规项按 type 做判别联合：每种违规一个模型，修复引擎按标签穷举匹配，
不再对任意字典做属性试探。
"""

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


class PlanKind(str, Enum):
    """被校验的结构化输出种类，value 即违规路径前缀"""
    CHAPTERS = "chapters"
    SCENES = "scenes"


class _ViolationBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message: str = ""
    severity: Severity = Severity.LOW
    auto_fixable: bool = Field(default=True, alias="autoFixable")
    path: str = ""


class MissingFieldViolation(_ViolationBase):
    type: Literal["missing_field"] = "missing_field"


class EmptyArrayViolation(_ViolationBase):
    type: Literal["empty_array"] = "empty_array"


class InvalidFormatViolation(_ViolationBase):
    type: Literal["invalid_format"] = "invalid_format"


class CoherenceViolation(_ViolationBase):
    """语义层面的问题，只能人工处理"""

    type: Literal["coherence"] = "coherence"
    auto_fixable: bool = Field(default=False, alias="autoFixable")

    @field_validator("auto_fixable", mode="after")
    @classmethod
    def _never_fixable(cls, value: bool) -> bool:
        return False


Violation = Annotated[
    Union[MissingFieldViolation, EmptyArrayViolation, InvalidFormatViolation, CoherenceViolation],
    Field(discriminator="type"),
]

violation_adapter: TypeAdapter = TypeAdapter(Violation)


class RepairAction(BaseModel):
    """一次修复的审计记录，保存修复前后的 JSON 快照"""

    type: str
    description: str
    original: str
    replacement: str


class RepairResult(BaseModel):
    success: bool
    actions: List[RepairAction] = Field(default_factory=list)
    message: str = ""
    repaired: Optional[List[Any]] = Field(default=None, exclude=True)
