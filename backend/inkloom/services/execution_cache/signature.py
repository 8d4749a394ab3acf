"""
执行签名

签名是输入的纯函数：同样的场景计划、前文与采样参数，在任何时刻、任何进程中
都得到同一个 64 位十六进制 SHA-256 串。规范化规则决定命中率与多样性的取舍：

- 节拍保持原有顺序，用 U+241F 连接（节拍顺序本身是语义的一部分）
- 必出实体去空白、去重后排序（顺序无关）
- 前文只取末尾固定长度并折叠空白
- temperature 按粒度四舍五入，max_tokens 按粒度向上取整
"""

import hashlib
import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from ...utils.text_utils import collapse_whitespace, extract_tail

BEAT_SEPARATOR = "␟"


def temperature_bucket(temperature: float, bin_size: float) -> float:
    """把 temperature 归入最近的分桶，返回保留两位小数的桶值"""
    if bin_size <= 0:
        return round(temperature, 2)
    return round(round(temperature / bin_size) * bin_size, 2)


def max_tokens_bucket(max_tokens: int, bin_size: int) -> int:
    """把 max_tokens 向上取整到分桶边界"""
    if max_tokens <= 0:
        return 0
    if bin_size <= 1:
        return int(max_tokens)
    return int(math.ceil(max_tokens / bin_size) * bin_size)


def normalize_entities(entities: Iterable[str]) -> List[str]:
    return sorted({name.strip() for name in entities if name and name.strip()})


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SignatureInput:
    """参与签名计算的全部输入，未规范化的原始值"""

    project_id: str
    chapter_id: str
    scene_index: int
    purpose: str
    beats: Tuple[str, ...] = ()
    required_entities: Tuple[str, ...] = ()
    entry_state: str = ""
    exit_state: str = ""
    stakes_delta: str = ""
    target_words: int = 0
    previous_content: str = ""
    prior_digest: str = ""
    model: str = ""
    temperature: float = 0.0
    max_tokens: int = 0


@dataclass(frozen=True)
class SignatureRules:
    """规范化参数"""

    temperature_bin: float = 0.1
    max_tokens_bin: int = 512
    context_tail_chars: int = 500

    @classmethod
    def from_settings(cls, settings) -> "SignatureRules":
        return cls(
            temperature_bin=settings.cache_temperature_bin,
            max_tokens_bin=settings.cache_max_tokens_bin,
            context_tail_chars=settings.cache_context_tail_chars,
        )


def canonical_payload(data: SignatureInput, rules: SignatureRules = SignatureRules()) -> Dict[str, Any]:
    """生成规范化后的签名载荷"""
    return {
        "project": data.project_id,
        "chapter": data.chapter_id,
        "scene": int(data.scene_index),
        "purpose": collapse_whitespace(data.purpose),
        "beats": BEAT_SEPARATOR.join(collapse_whitespace(beat) for beat in data.beats),
        "entities": normalize_entities(data.required_entities),
        "entry": collapse_whitespace(data.entry_state),
        "exit": collapse_whitespace(data.exit_state),
        "stakes": collapse_whitespace(data.stakes_delta),
        "target_words": int(data.target_words),
        "context_tail": collapse_whitespace(extract_tail(data.previous_content, rules.context_tail_chars)),
        "digest": collapse_whitespace(data.prior_digest),
        "model": data.model,
        "temperature": temperature_bucket(data.temperature, rules.temperature_bin),
        "max_tokens": max_tokens_bucket(data.max_tokens, rules.max_tokens_bin),
    }


def compute_signature(data: SignatureInput, rules: SignatureRules = SignatureRules()) -> str:
    """规范化 JSON（键排序、无空白、保留中文）的 SHA-256"""
    canonical = json.dumps(
        canonical_payload(data, rules),
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
