import re
import json
import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

# 模型的推理块：<thinking>…</thinking> 与 <think>…</think>
_REASONING_BLOCK = re.compile(r"<(thinking|think)>.*?</\1>", re.DOTALL)
# 只有开标签、流被截断时残留的推理内容
_DANGLING_REASONING = re.compile(r"<(thinking|think)>.*\Z", re.DOTALL)


def remove_think_tags(raw_text: str) -> str:
    """移除 <thinking>/<think> 推理块（含未闭合的残留块），避免污染结果。"""
    if not raw_text:
        return raw_text
    text = _REASONING_BLOCK.sub("", raw_text)
    text = _DANGLING_REASONING.sub("", text)
    return text.strip()


def unwrap_markdown_json(raw_text: str) -> str:
    """从 Markdown 或普通文本中提取 JSON 字符串，并替换结构位置上的中文引号。"""
    if not raw_text:
        return raw_text

    trimmed = raw_text.strip()

    fence_match = re.search(r"```(?:json|JSON)?\s*(.*?)\s*```", trimmed, re.DOTALL)
    if fence_match:
        candidate = fence_match.group(1).strip()
        if candidate:
            return normalize_chinese_quotes(candidate)

    json_start_candidates = [idx for idx in (trimmed.find("{"), trimmed.find("[")) if idx != -1]
    if json_start_candidates:
        start_idx = min(json_start_candidates)
        end_idx = max(trimmed.rfind("}"), trimmed.rfind("]"))
        if end_idx > start_idx:
            candidate = trimmed[start_idx : end_idx + 1].strip()
            if candidate:
                return normalize_chinese_quotes(candidate)

    return normalize_chinese_quotes(trimmed)


def normalize_chinese_quotes(text: str) -> str:
    """
    替换字符串外部用作JSON定界符的中文双引号

    字符串内容里的中文引号保持原样；能直接解析的文本不做任何改动。
    """
    if not text or ("“" not in text and "”" not in text):
        return text

    try:
        json.loads(text)
        return text
    except json.JSONDecodeError:
        pass

    result = []
    in_string = False
    escape_next = False
    for char in text:
        if escape_next:
            escape_next = False
        elif char == "\\":
            escape_next = True
        elif char == '"':
            in_string = not in_string
        elif not in_string and char in "“”":
            char = '"'
        result.append(char)
    return "".join(result)


def parse_json_list(content: Any) -> Optional[List[dict]]:
    """
    把结构化输出解析为对象列表

    接受已解析的列表、JSON 文本（允许 Markdown 代码块包裹）或
    ``{"chapters": [...]}`` / ``{"scenes": [...]}`` 形式的单键包装。
    任何一个元素不是对象、或文本无法解析时返回 None，从不抛出异常。
    """
    data = content
    if isinstance(content, (str, bytes)):
        text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
        try:
            data = json.loads(unwrap_markdown_json(remove_think_tags(text)) or "")
        except (json.JSONDecodeError, TypeError) as exc:
            logger.debug("结构化内容解析失败: %s", exc)
            return None

    if isinstance(data, dict) and len(data) == 1:
        data = next(iter(data.values()))

    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        return None
    return data


def dump_snapshot(data: Any) -> str:
    """生成修复前后对比用的JSON快照（2空格缩进，保留中文）"""
    return json.dumps(data, ensure_ascii=False, indent=2)


__all__ = [
    "dump_snapshot",
    "normalize_chinese_quotes",
    "parse_json_list",
    "remove_think_tags",
    "unwrap_markdown_json",
]
