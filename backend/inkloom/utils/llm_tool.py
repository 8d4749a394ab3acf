# -*- coding: utf-8 -*-
"""LLM 工具封装，提供统一的流式请求与收集机制。

仅支持 OpenAI Chat Completions API 格式（GPT、通义千问、DeepSeek 等兼容服务）。
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import AsyncGenerator, Dict, List, Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """聊天消息"""
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_list(cls, messages: List[Dict[str, str]]) -> List["ChatMessage"]:
        """批量转换消息列表"""
        return [cls(role=msg["role"], content=msg["content"]) for msg in messages]


@dataclass
class StreamCollectResult:
    """流式收集结果"""
    content: str  # 最终答案
    reasoning: str  # 思考过程（如有）
    finish_reason: Optional[str]  # 完成原因
    chunk_count: int  # 收到的chunk数量


class LLMClient:
    """AsyncOpenAI 的异步流式调用封装。"""

    def __init__(self, api_key: str, base_url: Optional[str] = None):
        if not api_key:
            raise ValueError("缺少 OPENAI_API_KEY 配置")
        self._base_url = base_url
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def stream_chat(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        **kwargs,
    ) -> AsyncGenerator[Dict[str, Optional[str]], None]:
        """
        流式聊天请求

        Yields:
            字典格式的流式响应，包含 content、reasoning_content、finish_reason
        """
        payload = {
            "model": model,
            "messages": [msg.to_dict() for msg in messages],
            "stream": True,
            **kwargs,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        request_id = str(uuid.uuid4())[:8]
        chunk_count = 0
        total_length = 0

        logger.info(
            "OpenAI API请求[%s]: base_url=%s, model=%s, max_tokens=%s",
            request_id, self._client.base_url, model, max_tokens,
        )
        try:
            stream = await self._client.with_options(timeout=float(timeout)).chat.completions.create(**payload)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]

                result = {
                    "content": choice.delta.content,
                    "reasoning_content": None,
                    "finish_reason": choice.finish_reason,
                }
                if choice.delta.content:
                    chunk_count += 1
                    total_length += len(choice.delta.content)

                # DeepSeek R1 等模型通过 reasoning_content 字段返回思考过程
                reasoning = getattr(choice.delta, "reasoning_content", None)
                if reasoning:
                    result["reasoning_content"] = reasoning

                yield result

            logger.info(
                "OpenAI API成功[%s]: chunks=%d, length=%d",
                request_id, chunk_count, total_length
            )
        except Exception as e:
            logger.error(
                "OpenAI API请求失败[%s]: model=%s, error_type=%s, error=%s",
                request_id, model, type(e).__name__, str(e),
            )
            raise

    async def stream_and_collect(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
    ) -> StreamCollectResult:
        """流式请求并收集完整响应（便捷方法）。"""
        content = ""
        reasoning = ""
        finish_reason = None
        chunk_count = 0

        async for chunk in self.stream_chat(
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        ):
            chunk_count += 1
            if chunk.get("content"):
                content += chunk["content"]
            if chunk.get("reasoning_content"):
                reasoning += chunk["reasoning_content"]
            if chunk.get("finish_reason"):
                finish_reason = chunk["finish_reason"]

        return StreamCollectResult(
            content=content,
            reasoning=reasoning,
            finish_reason=finish_reason,
            chunk_count=chunk_count,
        )
