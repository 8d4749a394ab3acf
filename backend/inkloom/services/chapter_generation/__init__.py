"""
章节生成模块

- context: 场景计划与会话状态
- decomposer: 节拍到场景的拆分
- prompt_builder: 场景提示词构建
- reasoning_filter: 流式推理块过滤
- events: 对外输出的生成事件
- workflow: 单次会话的状态机
- service: 核心服务（协调者）
"""

from .context import DraftRecord, GenerationSession, ScenePlan
from .decomposer import DecompositionPolicy, SceneDecomposer, beat_complexity
from .events import EventKind, GenerationEvent
from .prompt_builder import ScenePromptBuilder
from .reasoning_filter import ReasoningFilter
from .service import ChapterGenerationService
from .session_lock import ChapterSessionRegistry
from .workflow import ChapterGenerationWorkflow, GenerationOptions, SceneWriter

__all__ = [
    # 数据结构
    "DraftRecord",
    "GenerationSession",
    "ScenePlan",
    # 场景拆分
    "DecompositionPolicy",
    "SceneDecomposer",
    "beat_complexity",
    # 事件
    "EventKind",
    "GenerationEvent",
    "ReasoningFilter",
    # 提示词构建
    "ScenePromptBuilder",
    # 工作流
    "ChapterGenerationWorkflow",
    "ChapterSessionRegistry",
    "GenerationOptions",
    "SceneWriter",
    # 核心服务
    "ChapterGenerationService",
]
