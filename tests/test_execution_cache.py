"""
Tests for services/execution_cache
Signature normalisation, quality scoring and the content-addressed store.
"""

import asyncio
from datetime import timedelta

import pytest

from inkloom.exceptions import ResourceNotFoundError
from inkloom.models.mixins import utc_now
from inkloom.services.execution_cache import (
    CacheOutcome,
    CachePolicy,
    ExecutionCacheService,
    KeyedLockRegistry,
    QualityScorePolicy,
    SignatureInput,
    SignatureRules,
    compute_signature,
    content_hash,
)
from inkloom.services.execution_cache.signature import max_tokens_bucket, temperature_bucket


def make_input(**overrides):
    values = dict(
        project_id="p1",
        chapter_id="c1",
        scene_index=0,
        purpose="林舟沿着海堤走向灯塔",
        beats=("林舟沿着海堤走向灯塔", "沈月在塔下等候"),
        required_entities=("林舟", "沈月"),
        entry_state="林舟刚离开码头",
        exit_state="引出场景2",
        stakes_delta="",
        target_words=800,
        previous_content="夜雾从海面漫上码头。",
        prior_digest="林舟发现了信号灯。",
        model="gpt-4o-mini",
        temperature=0.75,
        max_tokens=1600,
    )
    values.update(overrides)
    return SignatureInput(**values)


class TestSignature:
    """Signatures are pure functions of normalised input."""

    def test_shape_and_determinism(self):
        first = compute_signature(make_input())
        assert len(first) == 64
        assert all(ch in "0123456789abcdef" for ch in first)
        assert compute_signature(make_input()) == first

    def test_entity_order_and_whitespace_ignored(self):
        base = compute_signature(make_input())
        assert compute_signature(make_input(required_entities=("沈月", " 林舟 ", "林舟"))) == base
        assert compute_signature(make_input(purpose="  林舟沿着海堤走向灯塔\n")) == base

    def test_beat_order_matters(self):
        base = compute_signature(make_input())
        swapped = compute_signature(make_input(beats=("沈月在塔下等候", "林舟沿着海堤走向灯塔")))
        assert swapped != base

    def test_sampling_buckets(self):
        base = compute_signature(make_input())
        assert compute_signature(make_input(temperature=0.68)) == compute_signature(make_input(temperature=0.72))
        assert compute_signature(make_input(temperature=0.9)) != base
        assert compute_signature(make_input(max_tokens=1537)) == base
        assert compute_signature(make_input(max_tokens=1536)) != base

    def test_context_only_tail_counts(self):
        rules = SignatureRules(context_tail_chars=10)
        prefix_a = "甲" * 50 + "夜雾从海面漫上码头。"
        prefix_b = "乙" * 50 + "夜雾从海面漫上码头。"
        assert compute_signature(make_input(previous_content=prefix_a), rules) == \
            compute_signature(make_input(previous_content=prefix_b), rules)

    @pytest.mark.parametrize("field,value", [
        ("project_id", "p2"),
        ("chapter_id", "c2"),
        ("scene_index", 1),
        ("target_words", 900),
        ("prior_digest", "另一份摘要"),
        ("model", "other"),
        ("stakes_delta", "局势恶化"),
    ])
    def test_each_field_contributes(self, field, value):
        assert compute_signature(make_input(**{field: value})) != compute_signature(make_input())

    def test_bucket_helpers(self):
        assert temperature_bucket(0.76, 0.1) == 0.8
        assert temperature_bucket(0.74, 0.1) == 0.7
        assert max_tokens_bucket(1, 512) == 512
        assert max_tokens_bucket(512, 512) == 512
        assert max_tokens_bucket(513, 512) == 1024
        assert max_tokens_bucket(0, 512) == 0

    def test_content_hash(self):
        assert content_hash("夜") == content_hash("夜")
        assert len(content_hash("夜")) == 64


class TestQualityScore:
    """Quality score formula and clamping."""

    def test_clean_pass_is_capped_at_100(self):
        policy = QualityScorePolicy()
        assert policy.score(errors=0, warnings=0, word_count=800, target_words=800, passed=True) == 100

    def test_penalties(self):
        policy = QualityScorePolicy()
        # 100 - 20 - 2*5 - 10 (偏差 25%)
        assert policy.score(errors=1, warnings=2, word_count=1000, target_words=800, passed=False) == 60
        # 偏差 50% 扣 20
        assert policy.score(errors=0, warnings=0, word_count=400, target_words=800, passed=False) == 80

    def test_floor_is_zero(self):
        policy = QualityScorePolicy()
        assert policy.score(errors=10, warnings=10, word_count=0, target_words=800, passed=False) == 0

    def test_weights_are_configurable(self):
        policy = QualityScorePolicy(base=90, error_penalty=5, pass_bonus=0)
        assert policy.score(errors=2, warnings=0, word_count=800, target_words=800, passed=False) == 80


class TestCacheStore:
    """lookup / record_miss / record_hit against SQLite."""

    @pytest.mark.asyncio
    async def test_lookup_missing(self, cache):
        assert await cache.lookup("0" * 64) is None
        assert cache.is_usable(None) is False

    @pytest.mark.asyncio
    async def test_record_miss_creates_entry(self, cache):
        outcome = await cache.record_miss("a" * 64, "夜雾弥漫。", 85)
        entry = await cache.lookup("a" * 64)

        assert outcome is CacheOutcome.CREATED
        assert entry.content == "夜雾弥漫。"
        assert entry.content_hash == content_hash("夜雾弥漫。")
        assert entry.quality_score == 85
        assert entry.reuse_count == 0
        assert cache.is_usable(entry)

    @pytest.mark.asyncio
    async def test_higher_quality_replaces_and_keeps_reuse(self, cache):
        signature = "b" * 64
        await cache.record_miss(signature, "初稿。", 75)
        await cache.record_hit(signature)

        assert await cache.record_miss(signature, "更好的稿子。", 90) is CacheOutcome.REPLACED
        entry = await cache.lookup(signature)
        assert entry.content == "更好的稿子。"
        assert entry.quality_score == 90
        assert entry.reuse_count == 1

    @pytest.mark.asyncio
    async def test_lower_or_equal_quality_is_kept(self, cache):
        signature = "c" * 64
        await cache.record_miss(signature, "初稿。", 80)

        assert await cache.record_miss(signature, "差一些。", 60) is CacheOutcome.KEPT
        assert await cache.record_miss(signature, "一样好。", 80) is CacheOutcome.KEPT
        assert (await cache.lookup(signature)).content == "初稿。"

    @pytest.mark.asyncio
    async def test_below_threshold_is_not_usable(self, cache):
        await cache.record_miss("d" * 64, "勉强。", 69)
        assert cache.is_usable(await cache.lookup("d" * 64)) is False

    @pytest.mark.asyncio
    async def test_quality_is_clamped(self, cache):
        await cache.record_miss("e" * 64, "满分。", 180)
        assert (await cache.lookup("e" * 64)).quality_score == 100

    @pytest.mark.asyncio
    async def test_record_hit_increments(self, cache):
        signature = "f" * 64
        await cache.record_miss(signature, "正文。", 90)
        before = await cache.lookup(signature)

        entry = await cache.record_hit(signature)
        entry = await cache.record_hit(signature)
        assert entry.reuse_count == 2
        assert entry.updated_at >= before.updated_at

    @pytest.mark.asyncio
    async def test_record_hit_unknown_signature(self, cache):
        with pytest.raises(ResourceNotFoundError):
            await cache.record_hit("9" * 64)

    @pytest.mark.asyncio
    async def test_concurrent_hits_are_not_lost(self, cache):
        signature = "1" * 64
        await cache.record_miss(signature, "正文。", 90)

        await asyncio.gather(*(cache.record_hit(signature) for _ in range(10)))
        assert (await cache.lookup(signature)).reuse_count == 10


class TestCacheMaintenance:
    """stats() and evict()."""

    @pytest.mark.asyncio
    async def test_stats_empty(self, cache):
        stats = await cache.stats()
        assert stats == {
            "totalSignatures": 0,
            "avgQualityScore": 0.0,
            "avgReuseCount": 0.0,
            "hitRate": 0.0,
            "totalReuse": 0,
        }

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.record_miss("a" * 64, "一。", 80)
        await cache.record_miss("b" * 64, "二。", 90)
        await cache.record_hit("a" * 64)
        await cache.record_hit("a" * 64)

        stats = await cache.stats()
        assert stats["totalSignatures"] == 2
        assert stats["avgQualityScore"] == 85.0
        assert stats["avgReuseCount"] == 1.0
        assert stats["totalReuse"] == 2
        assert stats["hitRate"] == 0.5

    @pytest.mark.asyncio
    async def test_evict_only_stale_low_quality_unused(self, session_factory):
        cache = ExecutionCacheService(session_factory, CachePolicy(low_quality_threshold=50, retention_days=7))
        await cache.record_miss("a" * 64, "低质量且未复用。", 30)
        await cache.record_miss("b" * 64, "低质量但复用过。", 30)
        await cache.record_hit("b" * 64)
        await cache.record_miss("c" * 64, "高质量。", 90)

        assert await cache.evict() == 0
        assert await cache.evict(now=utc_now() + timedelta(days=8)) == 1

        assert await cache.lookup("a" * 64) is None
        assert await cache.lookup("b" * 64) is not None
        assert await cache.lookup("c" * 64) is not None


class TestKeyedLocks:
    """Per-key locks serialise one key and are reclaimed afterwards."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialised(self):
        locks = KeyedLockRegistry()
        order = []

        async def worker(name):
            async with locks.hold("sig"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        locks = KeyedLockRegistry()
        async with locks.hold("x"):
            await asyncio.wait_for(self._enter(locks, "y"), timeout=1)
            assert len(locks) == 1
        assert len(locks) == 0

    @staticmethod
    async def _enter(locks, key):
        async with locks.hold(key):
            pass
