"""
Tests for services/llm_service.py
Error translation, response validation and retry behaviour of the model adapter.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from openai import APIConnectionError, APITimeoutError, RateLimitError

from inkloom.core.config import Settings
from inkloom.exceptions import LLMConfigurationError, LLMNetworkError, LLMServiceError, LLMTimeoutError
from inkloom.services.llm_service import LLMService, translate_llm_error
from inkloom.services.queue import LLMRequestQueue
from inkloom.utils.llm_tool import LLMClient, StreamCollectResult

REQUEST = httpx.Request("POST", "https://llm.example.com/v1/chat/completions")


def collected(content, finish_reason="stop"):
    return StreamCollectResult(content=content, reasoning="", finish_reason=finish_reason, chunk_count=3)


def make_service(client=None, **settings):
    settings.setdefault("openai_api_key", "sk-test")
    return LLMService(Settings(**settings), LLMRequestQueue(max_concurrent=2), client=client)


class TestTranslateLLMError:
    """SDK and transport errors become categorised service errors."""

    def test_timeouts(self):
        assert isinstance(translate_llm_error(asyncio.TimeoutError(), "m"), LLMTimeoutError)
        assert isinstance(translate_llm_error(httpx.ReadTimeout("slow"), "m"), LLMTimeoutError)
        # APITimeoutError 同时也是 APIConnectionError
        assert isinstance(translate_llm_error(APITimeoutError(request=REQUEST), "m"), LLMTimeoutError)

    def test_connection_errors(self):
        assert isinstance(translate_llm_error(APIConnectionError(request=REQUEST), "m"), LLMNetworkError)
        assert isinstance(translate_llm_error(httpx.ConnectError("refused"), "m"), LLMNetworkError)

    def test_rate_limit(self):
        response = httpx.Response(429, request=REQUEST, json={"error": {"message": "slow down"}})
        error = translate_llm_error(RateLimitError("slow down", response=response, body=None), "m")
        assert type(error) is LLMServiceError
        assert "频繁" in error.detail

    def test_passthrough_and_fallback(self):
        original = LLMTimeoutError("x", "m")
        assert translate_llm_error(original, "m") is original
        error = translate_llm_error(ValueError("odd"), "m")
        assert type(error) is LLMServiceError
        assert "ValueError" in error.detail


class TestCompleteText:
    """Non-streaming collection with validation and retries."""

    @pytest.mark.asyncio
    async def test_returns_content(self):
        client = AsyncMock(spec=LLMClient)
        client.stream_and_collect.return_value = collected("林舟走上海堤。")
        service = make_service(client)

        text = await service.complete_text("系统", "用户", temperature=0.2, max_tokens=256, timeout=30)

        assert text == "林舟走上海堤。"
        kwargs = client.stream_and_collect.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 256
        assert [message.role for message in kwargs["messages"]] == ["system", "user"]
        assert service.queue.get_status()["total_processed"] == 1

    @pytest.mark.asyncio
    async def test_truncated_response(self):
        client = AsyncMock(spec=LLMClient)
        client.stream_and_collect.return_value = collected("半句", finish_reason="length")
        with pytest.raises(LLMServiceError) as exc_info:
            await make_service(client).complete_text("系统", "用户", temperature=0.2)
        assert "截断" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_empty_response(self):
        client = AsyncMock(spec=LLMClient)
        client.stream_and_collect.return_value = collected("")
        with pytest.raises(LLMServiceError):
            await make_service(client).complete_text("系统", "用户", temperature=0.2)

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self):
        client = AsyncMock(spec=LLMClient)
        client.stream_and_collect.side_effect = [httpx.ConnectError("refused"), collected("摘要")]

        with patch("inkloom.services.llm_service.asyncio.sleep", new=AsyncMock()) as sleep:
            text = await make_service(client).complete_text("系统", "用户", temperature=0.2)

        assert text == "摘要"
        assert client.stream_and_collect.await_count == 2
        sleep.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self):
        client = AsyncMock(spec=LLMClient)
        client.stream_and_collect.side_effect = httpx.ConnectError("refused")

        with patch("inkloom.services.llm_service.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(LLMNetworkError):
                await make_service(client).complete_text("系统", "用户", temperature=0.2, max_retries=1)

        assert client.stream_and_collect.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        service = make_service(openai_api_key=None)
        with pytest.raises(LLMConfigurationError):
            await service.complete_text("系统", "用户", temperature=0.2)


class TestStreamText:
    @pytest.mark.asyncio
    async def test_chunks_pass_through(self):
        async def fake_stream(**kwargs):
            yield {"content": "夜雾", "reasoning_content": None, "finish_reason": None}
            yield {"content": None, "reasoning_content": None, "finish_reason": "stop"}

        client = AsyncMock(spec=LLMClient)
        client.stream_chat = fake_stream
        service = make_service(client)

        chunks = [chunk async for chunk in service.stream_text("系统", "用户", temperature=0.7)]

        assert [chunk["content"] for chunk in chunks] == ["夜雾", None]
        assert service.queue.get_status()["active"] == 0

    @pytest.mark.asyncio
    async def test_stream_errors_are_translated(self):
        async def failing_stream(**kwargs):
            yield {"content": "夜", "reasoning_content": None, "finish_reason": None}
            raise httpx.ReadTimeout("stalled")

        client = AsyncMock(spec=LLMClient)
        client.stream_chat = failing_stream

        with pytest.raises(LLMTimeoutError):
            async for _ in make_service(client).stream_text("系统", "用户", temperature=0.7):
                pass
