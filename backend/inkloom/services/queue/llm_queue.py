"""
LLM请求队列

管理所有LLM API调用的并发控制。
"""

from .base import RequestQueue


class LLMRequestQueue(RequestQueue):
    """
    LLM请求队列

    场景正文与摘要生成的模型调用都通过此队列进行并发控制。
    由应用启动时创建一份并注入到 LLMService，而不是模块级单例。
    """

    def __init__(self, max_concurrent: int = 3):
        super().__init__(name="llm", max_concurrent=max_concurrent)

    @classmethod
    def from_settings(cls, settings) -> "LLMRequestQueue":
        return cls(max_concurrent=settings.llm_max_concurrent)
