"""
异常处理辅助工具

提供统一的异常日志记录和用户端消息过滤函数，改善代码一致性。
"""

import logging
from typing import Optional

from fastapi import HTTPException

from ..exceptions import InkloomException

logger = logging.getLogger(__name__)


def log_exception(
    exc: BaseException,
    context: str,
    logger_instance: Optional[logging.Logger] = None,
    level: str = "error",
    include_traceback: bool = True,
    **extra_context
) -> None:
    """
    统一的异常日志记录函数

    Args:
        exc: 异常对象
        context: 上下文描述（如"生成场景正文"）
        logger_instance: 自定义logger，默认使用模块logger
        level: 日志级别（error/warning/info）
        include_traceback: 是否包含完整堆栈
        **extra_context: 额外上下文信息（如chapter_id, scene_index等）

    Example:
        log_exception(
            exc,
            "生成场景正文",
            chapter_id=chapter_id,
            scene_index=2,
        )
    """
    log = logger_instance or logger
    log_func = getattr(log, level, log.error)

    context_parts = [f"{k}={v}" for k, v in extra_context.items() if v is not None]
    context_str = f" ({', '.join(context_parts)})" if context_parts else ""

    exc_type = type(exc).__name__
    full_msg = f"{context}失败 [{exc_type}]: {exc}{context_str}"

    if include_traceback:
        log_func(full_msg, exc_info=exc)
    else:
        log_func(full_msg)



def get_safe_error_message(exc: BaseException, default_message: str = "服务内部错误，请稍后重试") -> str:
    """
    获取安全的用户端错误消息，过滤敏感信息

    此函数用于SSE流式响应等场景，确保不向客户端暴露数据库连接串、API密钥、文件路径等信息。

    过滤规则：
    1. InkloomException: 使用其已清洗的 message 属性
    2. HTTPException: 使用其 detail 属性
    3. 其他异常: 返回通用错误消息
    """
    if isinstance(exc, InkloomException):
        return exc.message

    if isinstance(exc, HTTPException):
        return str(exc.detail) if exc.detail else default_message

    return default_message
