"""
Tests for services/summary_service.py
Chapter -> volume -> project rolling summaries, retries and parking.
"""

import pytest

from inkloom.core.constants import SummaryScope
from inkloom.exceptions import LLMServiceError
from inkloom.repositories import FailedSummaryJobRepository, SummaryDigestRepository
from inkloom.services.queue import SummaryJob
from inkloom.services.summary_service import RetryPolicy, SummaryWorker

from fakes import PREVIOUS_CHAPTER_DIGEST, FakeSummarizer


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_worker(session_factory, summarizer, jobs=None, sleep=None, **policy):
    return SummaryWorker(
        session_factory,
        summarizer,
        retry_policy=RetryPolicy(**policy),
        enqueue=jobs.append if jobs is not None else None,
        sleep=sleep or RecordingSleep(),
    )


async def digest_of(session_factory, scope, target_id):
    async with session_factory() as session:
        return await SummaryDigestRepository(session).get_for_target(scope.value, target_id)


class TestRetryPolicy:
    def test_exponential_backoff_is_capped(self):
        policy = RetryPolicy(initial_delay=1.0, multiplier=2.0, max_delay=5.0)
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestSummaryChain:
    """Each level enqueues the next one up."""

    @pytest.mark.asyncio
    async def test_chapter_without_volume_goes_to_project(self, session_factory, seed):
        seeded = await seed()
        summarizer = FakeSummarizer()
        jobs = []
        worker = make_worker(session_factory, summarizer, jobs)

        result = await worker.process(SummaryJob(SummaryScope.CHAPTER, seeded.previous_chapter_id))

        assert result["success"] is True
        assert result["summaryLength"] > 0
        digest = await digest_of(session_factory, SummaryScope.CHAPTER, seeded.previous_chapter_id)
        assert digest.content.startswith("摘要1")
        assert digest.content != PREVIOUS_CHAPTER_DIGEST
        assert "第一章 夜雾" in summarizer.calls[0]["user_prompt"]

        assert len(jobs) == 1
        assert jobs[0].scope is SummaryScope.PROJECT
        assert jobs[0].target_id == seeded.project_id

        result = await worker.process(jobs[0])
        assert result["success"] is True
        project_digest = await digest_of(session_factory, SummaryScope.PROJECT, seeded.project_id)
        assert project_digest.content.startswith("摘要2")
        assert "【第一章 夜雾】" in summarizer.calls[1]["user_prompt"]
        # 项目摘要是链路终点
        assert len(jobs) == 1

    @pytest.mark.asyncio
    async def test_full_chain_with_volume(self, session_factory, seed):
        seeded = await seed(with_volume=True)
        summarizer = FakeSummarizer()
        jobs = []
        worker = make_worker(session_factory, summarizer, jobs)

        await worker.process(SummaryJob(SummaryScope.CHAPTER, seeded.previous_chapter_id))
        assert jobs[-1].scope is SummaryScope.VOLUME
        assert jobs[-1].target_id == seeded.volume_id

        await worker.process(jobs[-1])
        assert jobs[-1].scope is SummaryScope.PROJECT
        assert "卷名：第一卷 雾港" in summarizer.calls[1]["user_prompt"]

        await worker.process(jobs[-1])
        assert len(jobs) == 2
        assert "【第一卷 雾港】" in summarizer.calls[2]["user_prompt"]

        volume_digest = await digest_of(session_factory, SummaryScope.VOLUME, seeded.volume_id)
        project_digest = await digest_of(session_factory, SummaryScope.PROJECT, seeded.project_id)
        assert volume_digest.level == SummaryScope.VOLUME.level
        assert project_digest.level == SummaryScope.PROJECT.level

    @pytest.mark.asyncio
    async def test_resummarizing_overwrites(self, session_factory, seed):
        seeded = await seed()
        worker = make_worker(session_factory, FakeSummarizer())
        job = SummaryJob(SummaryScope.CHAPTER, seeded.previous_chapter_id)

        await worker.process(job)
        await worker.process(job)

        async with session_factory() as session:
            digests = await SummaryDigestRepository(session).list_for_targets(
                SummaryScope.CHAPTER.value, [seeded.previous_chapter_id]
            )
        assert len(digests) == 1
        assert digests[0].content.startswith("摘要2")


class TestSkips:
    """Missing or empty targets are skipped without calling the model."""

    @pytest.mark.asyncio
    async def test_empty_chapter(self, session_factory, seed):
        seeded = await seed()
        summarizer = FakeSummarizer()
        jobs = []
        worker = make_worker(session_factory, summarizer, jobs)

        result = await worker.process(SummaryJob(SummaryScope.CHAPTER, seeded.chapter_id))

        assert result == {"success": False, "summaryLength": 0, "skipped": True}
        assert summarizer.calls == []
        assert jobs == []

    @pytest.mark.asyncio
    async def test_missing_volume(self, session_factory):
        summarizer = FakeSummarizer()
        result = await make_worker(session_factory, summarizer).process(SummaryJob(SummaryScope.VOLUME, "missing"))
        assert result["skipped"] is True
        assert summarizer.calls == []

    @pytest.mark.asyncio
    async def test_project_without_digests(self, session_factory, seed):
        seeded = await seed(with_previous=False)
        summarizer = FakeSummarizer()
        result = await make_worker(session_factory, summarizer).process(
            SummaryJob(SummaryScope.PROJECT, seeded.project_id)
        )
        assert result["skipped"] is True
        assert summarizer.calls == []


class TestRetries:
    """run() retries with backoff and parks exhausted jobs."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, session_factory, seed):
        seeded = await seed()
        sleep = RecordingSleep()
        summarizer = FakeSummarizer(failures=1)
        worker = make_worker(session_factory, summarizer, sleep=sleep, initial_delay=1.0)

        result = await worker.run(SummaryJob(SummaryScope.CHAPTER, seeded.previous_chapter_id))

        assert result["success"] is True
        assert sleep.delays == [1.0]
        assert len(summarizer.calls) == 2

    @pytest.mark.asyncio
    async def test_exhausted_job_is_parked(self, session_factory, seed):
        seeded = await seed()
        sleep = RecordingSleep()
        worker = make_worker(
            session_factory, FakeSummarizer(always_fail=True), sleep=sleep,
            max_attempts=3, initial_delay=1.0, multiplier=2.0,
        )
        job = SummaryJob(SummaryScope.CHAPTER, seeded.previous_chapter_id, project_id=seeded.project_id)

        result = await worker.run(job)

        assert result == {"success": False, "summaryLength": 0, "parked": True}
        assert sleep.delays == [1.0, 2.0]
        async with session_factory() as session:
            parked = list(await FailedSummaryJobRepository(session).list_recent())
        assert len(parked) == 1
        assert parked[0].job_id == job.job_id
        assert parked[0].kind == "chapter"
        assert parked[0].attempts == 3
        assert parked[0].project_id == seeded.project_id
        assert parked[0].last_error == "RuntimeError: summarizer unavailable"

    @pytest.mark.asyncio
    async def test_failed_attempt_leaves_existing_digest(self, session_factory, seed):
        seeded = await seed()
        worker = make_worker(session_factory, FakeSummarizer(always_fail=True), max_attempts=1)

        await worker.run(SummaryJob(SummaryScope.CHAPTER, seeded.previous_chapter_id))

        digest = await digest_of(session_factory, SummaryScope.CHAPTER, seeded.previous_chapter_id)
        assert digest.content == PREVIOUS_CHAPTER_DIGEST

    @pytest.mark.asyncio
    async def test_empty_model_output_is_an_error(self, session_factory, seed):
        seeded = await seed()

        class ThinkingOnly(FakeSummarizer):
            async def complete_text(self, *args, **kwargs):
                await super().complete_text(*args, **kwargs)
                return "<think>只有推理</think>"

        worker = make_worker(session_factory, ThinkingOnly())
        with pytest.raises(LLMServiceError):
            await worker.process(SummaryJob(SummaryScope.CHAPTER, seeded.previous_chapter_id))

        digest = await digest_of(session_factory, SummaryScope.CHAPTER, seeded.previous_chapter_id)
        assert digest.content == PREVIOUS_CHAPTER_DIGEST


class TestDigestUpsert:
    """Duplicate deliveries racing on the same target leave one row, last write wins."""

    @pytest.mark.asyncio
    async def test_concurrent_first_insert_falls_back_to_update(self, session_factory, seed, monkeypatch):
        seeded = await seed(with_previous=False)
        target = dict(target_type=SummaryScope.PROJECT.value, target_id=seeded.project_id)

        async with session_factory() as session:
            await SummaryDigestRepository(session).upsert(
                project_id=seeded.project_id, level=SummaryScope.PROJECT.level, content="先写入的摘要", **target,
            )
            await session.commit()

        # 模拟另一个 worker 读到空结果之后才插入：第一次读取看不到已存在的行
        reads = []
        original = SummaryDigestRepository.get_for_target

        async def stale_first_read(self, target_type, target_id):
            reads.append(target_id)
            if len(reads) == 1:
                return None
            return await original(self, target_type, target_id)

        monkeypatch.setattr(SummaryDigestRepository, "get_for_target", stale_first_read)

        async with session_factory() as session:
            digest = await SummaryDigestRepository(session).upsert(
                project_id=seeded.project_id, level=SummaryScope.PROJECT.level, content="后写入的摘要", **target,
            )
            await session.commit()

        assert len(reads) == 2
        assert digest.content == "后写入的摘要"
        assert digest.version == 2

        async with session_factory() as session:
            rows = list(await SummaryDigestRepository(session).list(filters=target))
        assert len(rows) == 1
        assert rows[0].content == "后写入的摘要"
