"""
Tests for services/chapter_generation/reasoning_filter.py
Streaming separation of model reasoning from scene prose.
"""

from inkloom.services.chapter_generation import ReasoningFilter
from inkloom.services.chapter_generation.reasoning_filter import CONTENT, THINKING_END, THINKING_START


def run(chunks):
    filt = ReasoningFilter()
    segments = []
    for chunk in chunks:
        if isinstance(chunk, tuple):
            segments.extend(filt.feed(*chunk))
        else:
            segments.extend(filt.feed(chunk))
    segments.extend(filt.flush())
    return segments


def text_of(segments):
    return "".join(text for kind, text in segments if kind == CONTENT)


def markers(segments):
    return [kind for kind, _ in segments if kind != CONTENT]


class TestPlainContent:
    def test_passthrough(self):
        segments = run(["夜雾", "漫上码头。"])
        assert text_of(segments) == "夜雾漫上码头。"
        assert markers(segments) == []

    def test_lone_angle_bracket_is_released_on_flush(self):
        segments = run(["距离 <", " 三里"])
        assert text_of(segments) == "距离 < 三里"

    def test_trailing_partial_tag_is_released_on_flush(self):
        assert text_of(run(["结尾<thi"])) == "结尾<thi"


class TestInlineTags:
    def test_block_in_single_chunk(self):
        segments = run(["<think>先想想</think>林舟走上海堤。"])
        assert markers(segments) == [THINKING_START, THINKING_END]
        assert text_of(segments) == "林舟走上海堤。"

    def test_tags_split_across_chunks(self):
        segments = run(["前言<thin", "king>推理", "内容</thi", "nking>正文"])
        assert markers(segments) == [THINKING_START, THINKING_END]
        assert text_of(segments) == "前言正文"

    def test_unclosed_block_is_dropped(self):
        segments = run(["正文。<thinking>没写完的推理"])
        assert markers(segments) == [THINKING_START, THINKING_END]
        assert text_of(segments) == "正文。"

    def test_in_reasoning_flag(self):
        filt = ReasoningFilter()
        filt.feed("<think>推理中")
        assert filt.in_reasoning is True
        filt.feed("</think>")
        assert filt.in_reasoning is False


class TestProviderReasoning:
    def test_reasoning_field_then_content(self):
        segments = run([(None, "第一段推理"), (None, "第二段推理"), ("林舟走上海堤。", None)])
        assert markers(segments) == [THINKING_START, THINKING_END]
        assert segments[0] == (THINKING_START, "")
        assert text_of(segments) == "林舟走上海堤。"

    def test_reasoning_only_stream_is_closed_on_flush(self):
        segments = run([(None, "只有推理")])
        assert markers(segments) == [THINKING_START, THINKING_END]
        assert text_of(segments) == ""
