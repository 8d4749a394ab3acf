"""
统一异常体系

提供业务逻辑层的异常定义，避免直接使用HTTPException。
所有异常都会被全局异常处理器捕获并转换为HTTP响应；
SSE 流中的异常则通过 core.errors.classify_error 转换为 error 事件。
"""

from typing import Optional

from .core.constants import ErrorCategory


class InkloomException(Exception):
    """
    Inkloom基础异常类

    所有业务异常的基类，会被全局异常处理器捕获。

    Attributes:
        message: 错误消息（面向用户）
        status_code: HTTP状态码
        detail: 详细错误信息（可选，用于日志）
        category: 错误分类，决定 recoverable/canRetry/canSave 标志
    """

    category: ErrorCategory = ErrorCategory.SERVER

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        detail: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.detail = detail or message
        super().__init__(self.message)


# ==================== 4xx 客户端错误 ====================


class ResourceNotFoundError(InkloomException):
    """资源不存在（404）"""

    category = ErrorCategory.VALIDATION

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource}不存在",
            status_code=404,
            detail=f"{resource}不存在: {identifier}"
        )


class InvalidParameterError(InkloomException):
    """参数错误（400）"""

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, parameter: Optional[str] = None):
        detail = f"参数错误: {parameter} - {message}" if parameter else message
        super().__init__(
            message=message,
            status_code=400,
            detail=detail
        )


class ConflictError(InkloomException):
    """资源冲突（409）"""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message=message, status_code=409, detail=detail)


class ConcurrentGenerationError(ConflictError):
    """同一章节已有生成会话在进行（409）"""

    category = ErrorCategory.CONCURRENT_SESSION

    def __init__(self, chapter_id: str):
        self.chapter_id = chapter_id
        super().__init__(
            message="该章节正在生成中，请等待当前生成结束后再试",
            detail=f"章节 {chapter_id} 已存在活跃的生成会话",
        )


class PlanValidationError(InkloomException):
    """结构化大纲无法通过校验且无法自动修复（422）"""

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message=message, status_code=422, detail=detail)



# ==================== 5xx 服务端错误 ====================


class LLMServiceError(InkloomException):
    """LLM服务错误（503）"""

    category = ErrorCategory.SERVER
    user_message = "AI服务暂时不可用，请稍后重试"

    def __init__(self, message: str, provider: Optional[str] = None):
        detail = f"LLM服务错误 [{provider}]: {message}" if provider else f"LLM服务错误: {message}"
        super().__init__(
            message=self.user_message,
            status_code=503,
            detail=detail
        )


class LLMNetworkError(LLMServiceError):
    """无法连接到LLM服务（503）"""

    category = ErrorCategory.NETWORK
    user_message = "无法连接到 AI 服务，请检查网络后重试"


class LLMTimeoutError(LLMServiceError):
    """LLM调用超时（503）"""

    category = ErrorCategory.TIMEOUT
    user_message = "AI 服务响应超时"


class LLMConfigurationError(InkloomException):
    """LLM配置错误（500）"""

    def __init__(self, message: str):
        super().__init__(
            message="LLM配置错误",
            status_code=500,
            detail=message
        )

