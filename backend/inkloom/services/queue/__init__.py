"""
队列模块

提供LLM请求的并发控制与摘要任务的异步工作队列。
"""

from .base import RequestQueue
from .llm_queue import LLMRequestQueue
from .summary_queue import SummaryJob, SummaryQueue

__all__ = [
    "RequestQueue",
    "LLMRequestQueue",
    "SummaryJob",
    "SummaryQueue",
]
