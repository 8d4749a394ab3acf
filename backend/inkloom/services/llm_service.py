"""
LLM服务

负责与大语言模型的交互：场景正文的流式生成与摘要的非流式收集。
所有调用都经过注入的 LLMRequestQueue 做并发控制。
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Dict, List, Optional

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    RateLimitError,
)

from ..core.config import Settings
from ..core.constants import LLMConstants
from ..exceptions import (
    LLMConfigurationError,
    LLMNetworkError,
    LLMServiceError,
    LLMTimeoutError,
)
from .queue import LLMRequestQueue
from ..utils.llm_tool import ChatMessage, LLMClient, StreamCollectResult

logger = logging.getLogger(__name__)


def translate_llm_error(exc: BaseException, model: Optional[str]) -> LLMServiceError:
    """把 SDK / httpx / asyncio 的异常统一翻译为带分类的 LLMServiceError"""
    if isinstance(exc, LLMServiceError):
        return exc
    # APITimeoutError 是 APIConnectionError 的子类，必须先判断
    if isinstance(exc, (APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return LLMTimeoutError(f"调用超时: {type(exc).__name__}", model)
    if isinstance(exc, (APIConnectionError, httpx.TransportError)):
        return LLMNetworkError(f"连接失败: {type(exc).__name__}: {exc}", model)
    if isinstance(exc, RateLimitError):
        return LLMServiceError("AI 服务请求过于频繁", model)
    if isinstance(exc, APIStatusError):
        return LLMServiceError(_extract_error_detail(exc, f"HTTP {exc.status_code}"), model)
    return LLMServiceError(f"AI 服务发生意外错误: {type(exc).__name__}: {exc}", model)


def _extract_error_detail(exc: APIStatusError, default_detail: str) -> str:
    """从服务端错误响应中提取错误详情"""
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            payload = response.json()
            error_data = payload.get("error", {}) if isinstance(payload, dict) else {}
            return error_data.get("message_zh") or error_data.get("message") or default_detail
        except (json.JSONDecodeError, ValueError, AttributeError):
            return str(exc) or default_detail
    return str(exc) or default_detail


class LLMService:
    """封装与大模型交互的所有逻辑，客户端按需创建并复用。"""

    def __init__(
        self,
        settings: Settings,
        queue: LLMRequestQueue,
        client: Optional[LLMClient] = None,
    ):
        self.settings = settings
        self.queue = queue
        self._client = client

    @property
    def model_name(self) -> str:
        return self.settings.openai_model_name

    def _get_client(self) -> LLMClient:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise LLMConfigurationError("未配置默认 LLM API Key")
            base_url = str(self.settings.openai_base_url) if self.settings.openai_base_url else None
            self._client = LLMClient(api_key=self.settings.openai_api_key, base_url=base_url)
        return self._client

    @staticmethod
    def _build_messages(system_prompt: str, user_prompt: str) -> List[ChatMessage]:
        return ChatMessage.from_list([
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ])

    # ------------------------------------------------------------------
    # 流式生成
    # ------------------------------------------------------------------
    async def stream_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: Optional[int] = None,
        timeout: float = LLMConstants.DEFAULT_TIMEOUT,
    ) -> AsyncIterator[Dict[str, Optional[str]]]:
        """
        流式获取LLM响应

        Yields:
            包含 content、reasoning_content、finish_reason 的字典

        Raises:
            LLMTimeoutError / LLMNetworkError / LLMServiceError / LLMConfigurationError
        """
        client = self._get_client()
        messages = self._build_messages(system_prompt, user_prompt)

        logger.info(
            "Streaming LLM response: model=%s max_tokens=%s timeout=%.0fs",
            self.model_name, max_tokens, timeout,
        )
        async with self.queue.request_slot():
            try:
                async for chunk in client.stream_chat(
                    messages=messages,
                    model=self.model_name,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=timeout,
                ):
                    yield chunk
            except Exception as exc:
                raise translate_llm_error(exc, self.model_name) from exc

    # ------------------------------------------------------------------
    # 非流式收集
    # ------------------------------------------------------------------
    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: Optional[int] = None,
        timeout: float = LLMConstants.DEFAULT_TIMEOUT,
        max_retries: int = LLMConstants.MAX_RETRIES,
    ) -> str:
        """
        流式收集LLM响应，网络错误与限流自动重试

        Returns:
            收集到的响应文本（不含思考过程）
        """
        client = self._get_client()
        messages = self._build_messages(system_prompt, user_prompt)

        async with self.queue.request_slot():
            for attempt in range(max_retries + 1):
                try:
                    if attempt > 0:
                        logger.warning(
                            "Retrying LLM request: attempt=%d/%d model=%s",
                            attempt + 1, max_retries + 1, self.model_name,
                        )
                    result = await client.stream_and_collect(
                        messages=messages,
                        model=self.model_name,
                        temperature=temperature,
                        max_tokens=max_tokens,
                        timeout=timeout,
                    )
                    self._validate_llm_response(result)
                    return result.content

                except (httpx.TransportError, APIConnectionError, RateLimitError) as exc:
                    error = translate_llm_error(exc, self.model_name)
                    logger.error(
                        "LLM request failed: model=%s attempt=%d/%d detail=%s",
                        self.model_name, attempt + 1, max_retries + 1, error.detail,
                    )
                    if attempt >= max_retries:
                        raise error from exc

                    wait_time = 2 ** (attempt + 1)
                    if isinstance(exc, RateLimitError):
                        wait_time = 10 * (attempt + 1)
                    logger.info("Waiting %d seconds before retry...", wait_time)
                    await asyncio.sleep(wait_time)

                except LLMServiceError:
                    raise

                except Exception as exc:
                    raise translate_llm_error(exc, self.model_name) from exc

        raise LLMServiceError("LLM 调用未能完成", self.model_name)

    def _validate_llm_response(self, result: StreamCollectResult) -> None:
        """验证LLM响应结果"""
        if result.finish_reason == "length":
            logger.warning("LLM response truncated: model=%s", self.model_name)
            raise LLMServiceError("AI 响应被截断，请缩短输入或调整参数", self.model_name)

        if not result.content:
            logger.error(
                "LLM returned empty response: model=%s chunks=%d",
                self.model_name, result.chunk_count,
            )
            raise LLMServiceError("AI 未返回有效内容", self.model_name)


__all__ = ["LLMService", "translate_llm_error"]
