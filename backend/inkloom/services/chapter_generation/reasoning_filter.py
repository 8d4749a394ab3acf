"""
流式推理块过滤

模型的推理过程有两种到达方式：供应商单独下发的 reasoning_content 字段，
或混在正文里的 <thinking>/<think> 标签块。过滤器逐块接收流式片段，
把推理部分替换为 thinking_start / thinking_end 两个标记，只放行正文。

标签可能被切分在两个片段之间，因此末尾可能是标签前缀的文本会暂存到下一块。
"""

from typing import List, Optional, Sequence, Tuple

OPEN_TAGS = ("<thinking>", "<think>")

CONTENT = "content"
THINKING_START = "thinking_start"
THINKING_END = "thinking_end"

Segment = Tuple[str, str]


def _pending_prefix_length(text: str, tags: Sequence[str]) -> int:
    """text 末尾与任一标签前缀重合的最大长度"""
    longest = 0
    for tag in tags:
        for size in range(min(len(tag) - 1, len(text)), 0, -1):
            if text.endswith(tag[:size]):
                longest = max(longest, size)
                break
    return longest


def _find_open_tag(text: str) -> Tuple[int, Optional[str]]:
    found, found_tag = -1, None
    for tag in OPEN_TAGS:
        index = text.find(tag)
        if index != -1 and (found == -1 or index < found):
            found, found_tag = index, tag
    return found, found_tag


class ReasoningFilter:
    def __init__(self):
        self._buffer = ""
        self._closing_tag: Optional[str] = None
        self._provider_reasoning = False

    @property
    def in_reasoning(self) -> bool:
        return self._closing_tag is not None or self._provider_reasoning

    def feed(self, content: Optional[str], reasoning: Optional[str] = None) -> List[Segment]:
        segments: List[Segment] = []
        if reasoning:
            if not self.in_reasoning:
                segments.append((THINKING_START, ""))
            self._provider_reasoning = True

        if content:
            if self._provider_reasoning:
                self._provider_reasoning = False
                if self._closing_tag is None:
                    segments.append((THINKING_END, ""))
            self._buffer += content
            segments.extend(self._drain())
        return segments

    def flush(self) -> List[Segment]:
        """流结束：未闭合的推理块直接丢弃，暂存的正文全部放行"""
        segments: List[Segment] = []
        if self.in_reasoning:
            segments.append((THINKING_END, ""))
        elif self._buffer:
            segments.append((CONTENT, self._buffer))
        self._buffer = ""
        self._closing_tag = None
        self._provider_reasoning = False
        return segments

    def _drain(self) -> List[Segment]:
        segments: List[Segment] = []
        while self._buffer:
            if self._closing_tag is None:
                index, tag = _find_open_tag(self._buffer)
                if tag is not None:
                    if index > 0:
                        segments.append((CONTENT, self._buffer[:index]))
                    self._buffer = self._buffer[index + len(tag):]
                    self._closing_tag = "</" + tag[1:]
                    segments.append((THINKING_START, ""))
                    continue

                keep = _pending_prefix_length(self._buffer, OPEN_TAGS)
                ready = self._buffer[:len(self._buffer) - keep]
                if ready:
                    segments.append((CONTENT, ready))
                self._buffer = self._buffer[len(self._buffer) - keep:]
                break

            index = self._buffer.find(self._closing_tag)
            if index != -1:
                self._buffer = self._buffer[index + len(self._closing_tag):]
                self._closing_tag = None
                segments.append((THINKING_END, ""))
                continue

            keep = _pending_prefix_length(self._buffer, (self._closing_tag,))
            self._buffer = self._buffer[len(self._buffer) - keep:]
            break
        return segments
