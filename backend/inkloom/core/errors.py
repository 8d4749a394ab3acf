"""
错误分类

把任意异常归类为 network / timeout / validation / server / concurrent-session，
并附带 recoverable、canRetry、canSave 三个能力标志，供 SSE error 事件、
scene_failed 事件以及全局异常处理器统一使用。
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict

import httpx
from openai import APIConnectionError, APITimeoutError
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from .constants import ErrorCategory
from ..exceptions import InkloomException
from ..utils.exception_helpers import get_safe_error_message


# 分类 -> (recoverable, can_retry, can_save)
_CAPABILITIES = {
    ErrorCategory.NETWORK: (True, True, True),
    ErrorCategory.TIMEOUT: (True, True, True),
    ErrorCategory.VALIDATION: (True, False, True),
    ErrorCategory.SERVER: (False, True, True),
    ErrorCategory.CONCURRENT_SESSION: (True, True, False),
}


@dataclass(frozen=True)
class ErrorInfo:
    """面向调用方的错误描述"""

    type: ErrorCategory
    message: str
    recoverable: bool
    can_retry: bool
    can_save: bool

    @classmethod
    def of(cls, category: ErrorCategory, message: str) -> "ErrorInfo":
        recoverable, can_retry, can_save = _CAPABILITIES[category]
        return cls(
            type=category,
            message=message,
            recoverable=recoverable,
            can_retry=can_retry,
            can_save=can_save,
        )

    def to_payload(self) -> Dict[str, Any]:
        """序列化为前端约定的字段名"""
        return {
            "error": self.message,
            "type": self.type.value,
            "recoverable": self.recoverable,
            "canRetry": self.can_retry,
            "canSave": self.can_save,
        }


def classify_error(exc: BaseException, default_message: str = "服务内部错误，请稍后重试") -> ErrorInfo:
    """
    将异常归类为 ErrorInfo

    业务异常使用自身的 category；第三方异常按类型映射，
    消息统一经过 get_safe_error_message 过滤，避免泄露内部细节。
    """
    if isinstance(exc, InkloomException):
        return ErrorInfo.of(exc.category, exc.message)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException, APITimeoutError)):
        return ErrorInfo.of(ErrorCategory.TIMEOUT, "AI 服务响应超时")

    if isinstance(exc, (httpx.TransportError, APIConnectionError, ConnectionError, OperationalError)):
        return ErrorInfo.of(ErrorCategory.NETWORK, "网络连接异常，请稍后重试")

    if isinstance(exc, SQLAlchemyError):
        return ErrorInfo.of(ErrorCategory.SERVER, "数据库操作失败")

    return ErrorInfo.of(ErrorCategory.SERVER, get_safe_error_message(exc, default_message))


__all__ = [
    "ErrorInfo",
    "classify_error",
]
