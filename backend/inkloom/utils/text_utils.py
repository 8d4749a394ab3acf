"""
文本处理工具

提供字数统计、截断、前文窗口提取等通用功能。
统一项目中的文本截断与计数逻辑，避免各服务各算各的。
"""

import re
from typing import Optional

# 中日韩统一表意文字（含扩展A区与兼容区）
_CJK_PATTERN = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")
# 连续的拉丁字母/数字视为一个词，允许词内的撇号与连字符
_LATIN_WORD_PATTERN = re.compile(r"[A-Za-z0-9]+(?:['\-][A-Za-z0-9]+)*")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def count_words(text: Optional[str]) -> int:
    """
    统计字数：每个汉字计1，每个拉丁单词或数字串计1，标点与空白不计

    Examples:
        >>> count_words("林远拔出了剑。")
        6
        >>> count_words("He said hello 3 times")
        5
        >>> count_words("")
        0
    """
    if not text:
        return 0
    return len(_CJK_PATTERN.findall(text)) + len(_LATIN_WORD_PATTERN.findall(text))


def truncate(
    text: Optional[str],
    max_length: int,
    suffix: str = "...",
    strip: bool = True,
) -> str:
    """
    截断文本到指定长度

    Args:
        text: 原始文本，None 会返回空字符串
        max_length: 最大长度（不含后缀）
        suffix: 截断后缀，默认 "..."
        strip: 是否去除首尾空白，默认 True

    Examples:
        >>> truncate("Hello World", 5)
        'Hello...'
        >>> truncate("Hi", 5)
        'Hi'
    """
    if not text:
        return ""

    if strip:
        text = text.strip()

    if len(text) <= max_length:
        return text

    return text[:max_length] + suffix


def collapse_whitespace(text: Optional[str]) -> str:
    """把任意空白序列折叠为单个空格并去除首尾空白"""
    if not text:
        return ""
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def extract_tail(text: Optional[str], max_chars: int) -> str:
    """
    取文本末尾的 max_chars 个字符

    max_chars <= 0 时返回空字符串。
    """
    if not text or max_chars <= 0:
        return ""
    text = text.strip()
    return text[-max_chars:]


def smart_context_window(text: Optional[str], max_chars: int) -> str:
    """
    提取末尾的上下文窗口，并尽量从段落边界开始

    先取末尾 max_chars 个字符，若窗口内存在换行，则丢弃第一个换行之前的
    半截段落；窗口内没有换行时原样返回，避免把内容全部丢掉。

    Examples:
        >>> smart_context_window("第一段\\n第二段\\n第三段", 6)
        '第三段'
    """
    tail = extract_tail(text, max_chars)
    if not tail or len(tail) == len(text.strip()):
        return tail

    newline = tail.find("\n")
    if newline != -1 and tail[newline + 1:].strip():
        return tail[newline + 1:].lstrip()
    return tail
