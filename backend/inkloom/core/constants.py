"""
常量定义模块

集中管理应用中使用的所有常量，提升代码可维护性和可读性。
"""

from enum import Enum


class ChapterStatus(str, Enum):
    """章节正文状态

    继承str使其可以直接与字符串比较，便于直接写入数据库列。
    """
    NOT_GENERATED = "not_generated"  # 尚未生成
    GENERATING = "generating"        # 正在生成
    COMPLETED = "completed"          # 全部场景成功
    PARTIAL = "partial"              # 部分场景失败或被取消
    FAILED = "failed"                # 没有任何场景成功


class SessionState(str, Enum):
    """生成会话状态机的状态"""
    IDLE = "idle"
    CONNECTING = "connecting"
    DECOMPOSING = "decomposing"
    SCENE_GENERATING = "scene_generating"
    VALIDATING = "validating"
    REPAIRING = "repairing"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.ERROR)


class ErrorCategory(str, Enum):
    """面向调用方的错误分类"""
    NETWORK = "network"                        # 模型或存储的传输失败
    TIMEOUT = "timeout"                        # 模型调用超时
    VALIDATION = "validation"                  # 结构化输出不符合预期
    SERVER = "server"                          # 未预期的内部错误
    CONCURRENT_SESSION = "concurrent-session"  # 同一章节重复发起生成


class SummaryScope(str, Enum):
    """摘要任务的作用范围，value 即摘要层级名称"""
    CHAPTER = "chapter"
    VOLUME = "volume"
    PROJECT = "project"

    @property
    def level(self) -> int:
        return {"chapter": 0, "volume": 1, "project": 2}[self.value]


class LLMConstants:
    """LLM调用相关常量"""

    # 超时配置（秒）
    DEFAULT_TIMEOUT = 120.0

    # Token限制
    SCENE_MAX_TOKENS_FACTOR = 2.0  # 场景生成 max_tokens ≈ 目标字数 × 该系数
    SUMMARY_MAX_TOKENS = 2048

    # 重试配置
    MAX_RETRIES = 2  # 非流式收集时的最大重试次数


class SceneConstants:
    """场景拆分与正文处理相关常量"""

    PREVIOUS_CHAPTER_TAIL_CHARS = 1500  # 第一个场景引用上一章结尾的字符数
    CONTEXT_WINDOW_CHARS = 2000         # 后续场景引用本章已生成内容的窗口大小
    LOCAL_SUMMARY_CHARS = 200           # 场景局部摘要长度
    PLACEHOLDER_TEXT = "待完善"
    UNTITLED = "未命名"


class SummaryConstants:
    """摘要流水线相关常量"""

    CHAPTER_SOURCE_CHARS = 5000  # 章节摘要只读取正文前5000字
