"""
SSE (Server-Sent Events) 辅助工具

生成事件按 `event: <类型>` + 单行 JSON `data:` 的格式写出，空行分隔。
"""

import json
from typing import Any, AsyncIterator, Dict

from fastapi.responses import StreamingResponse


def sse_event(event_type: str, data: Dict[str, Any]) -> str:
    """
    格式化SSE事件

    示例:
        >>> sse_event("scene_content_chunk", {"sceneIndex": 0, "chunk": "夜"})
        'event: scene_content_chunk\\ndata: {"sceneIndex": 0, "chunk": "夜"}\\n\\n'
    """
    # JSON 序列化后不含换行，保证 data 只占一行
    json_data = json.dumps(data, ensure_ascii=False)
    return f"event: {event_type}\ndata: {json_data}\n\n"


# SSE响应标准头部
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_sse_response(generator: AsyncIterator[str]) -> StreamingResponse:
    """创建标准的SSE流式响应，统一各路由的头部设置"""
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
