"""
Tests for services/chapter_generation/workflow.py
End-to-end generation sessions against a real SQLite database and a scripted writer.
"""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from inkloom.core.constants import ChapterStatus, SessionState, SummaryScope
from inkloom.exceptions import ConcurrentGenerationError, LLMTimeoutError, ResourceNotFoundError
from inkloom.repositories import ChapterRepository, DraftChunkRepository, SceneFrameRepository
from inkloom.services.chapter_generation import ChapterGenerationService, DecompositionPolicy, GenerationOptions
from inkloom.services.chapter_generation.events import EventKind

from fakes import DEFAULT_BEATS, FakeWriter, collect_events, kinds


async def load_chapter(session_factory, chapter_id):
    async with session_factory() as session:
        return await ChapterRepository(session).get_by_id(chapter_id)


def of_kind(events, kind):
    return [event for event in events if event.kind is kind]


class TestFullSession:
    """A session where every scene succeeds."""

    @pytest.mark.asyncio
    async def test_event_order(self, service, seed):
        seeded = await seed()
        events = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        names = kinds(events)
        assert names[:3] == ["connected", "progress", "scenes_decomposed"]
        assert names[-2:] == ["progress", "completed"]
        assert names.count("scene_start") == 3
        assert names.count("scene_completed") == 3

        # 每个场景的事件都落在自己的 scene_start 与 scene_completed 之间
        for index in range(3):
            start = next(i for i, e in enumerate(events) if e.kind is EventKind.SCENE_START and e.data["sceneIndex"] == index)
            end = next(i for i, e in enumerate(events) if e.kind is EventKind.SCENE_COMPLETED and e.data["sceneIndex"] == index)
            between = events[start + 1:end]
            assert between
            assert all(e.kind is EventKind.SCENE_CONTENT_CHUNK and e.data["sceneIndex"] == index for e in between)

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_ends_at_100(self, service, seed):
        seeded = await seed()
        events = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        values = [event.data["progress"] for event in events if "progress" in event.data]
        assert values[0] == 0
        assert values == sorted(values)
        assert values[-1] == 100
        assert of_kind(events, EventKind.SCENES_DECOMPOSED)[0].data["progress"] == 10

    @pytest.mark.asyncio
    async def test_completed_summary(self, service, seed, writer, summary_jobs, session_factory):
        seeded = await seed()
        workflow = service.create_workflow(seeded.project_id, seeded.chapter_id)
        events = await collect_events(workflow)

        completed = events[-1].data
        assert completed["success"] is True
        assert completed["totalScenes"] == 3
        assert completed["successfulScenes"] == 3
        assert completed["failedScenes"] == 0
        assert completed["cacheHits"] == 0
        assert completed["ruleChecksPassed"] == 3
        assert completed["totalWarnings"] == 0
        assert completed["wordCount"] == 180
        assert completed["message"] == "3/3 个场景通过检查，0 条警告"
        assert workflow.state is SessionState.COMPLETED
        assert len(writer.calls) == 3

        chapter = await load_chapter(session_factory, seeded.chapter_id)
        assert chapter.status == ChapterStatus.COMPLETED.value
        assert chapter.word_count == 180
        assert chapter.content.count("\n\n") == 5
        assert chapter.generated_at is not None

        assert len(summary_jobs) == 1
        assert summary_jobs[0].scope is SummaryScope.CHAPTER
        assert summary_jobs[0].target_id == seeded.chapter_id

    @pytest.mark.asyncio
    async def test_scene_frames_and_drafts_persisted(self, service, seed, session_factory):
        seeded = await seed()
        await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        async with session_factory() as session:
            frames = list(await SceneFrameRepository(session).list_by_chapter(seeded.chapter_id))
            drafts = list(await DraftChunkRepository(session).list_by_chapter(seeded.chapter_id))

        assert [frame.purpose for frame in frames] == list(DEFAULT_BEATS)
        assert [frame.target_words for frame in frames] == [60, 60, 60]
        assert len(drafts) == 3
        assert all(draft.rule_checks_passed for draft in drafts)
        assert all(draft.quality_score == 100 for draft in drafts)
        assert all(len(draft.signature) == 64 for draft in drafts)
        assert {draft.scene_id for draft in drafts} == {frame.id for frame in frames}

    @pytest.mark.asyncio
    async def test_prompts_carry_previous_chapter_context(self, service, seed, writer):
        seeded = await seed()
        await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        first, second = writer.calls[0], writer.calls[1]
        assert "冷峻克制" in first["system_prompt"]
        assert "灯罩上刻着失踪船员的名字" in first["user_prompt"]
        assert "林舟在码头仓库发现了失踪船员留下的信号灯" in first["user_prompt"]
        assert "场景 1/3" in first["user_prompt"]
        # 第二个场景衔接的是本章已生成的第一个场景
        assert "第1处细节" in second["user_prompt"]
        assert first["max_tokens"] == 120
        assert first["timeout"] == 5.0


class TestCacheReuse:
    """Re-running an unchanged chapter is served entirely from the execution cache."""

    @pytest.mark.asyncio
    async def test_second_run_hits_cache(self, service, seed, writer, cache):
        seeded = await seed()
        first = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))
        second = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        assert len(writer.calls) == 3
        completed = second[-1].data
        assert completed["cacheHits"] == 3
        assert completed["successfulScenes"] == 3
        assert all(e.data["cacheHit"] for e in of_kind(second, EventKind.SCENE_COMPLETED))
        assert all(e.data["qualityScore"] == 100 for e in of_kind(second, EventKind.SCENE_COMPLETED))

        # 命中时整个场景正文作为一个片段下发
        chunks = of_kind(second, EventKind.SCENE_CONTENT_CHUNK)
        assert len(chunks) == 3
        first_text = "".join(e.data["chunk"] for e in of_kind(first, EventKind.SCENE_CONTENT_CHUNK) if e.data["sceneIndex"] == 0)
        assert chunks[0].data["chunk"] == first_text

        stats = await cache.stats()
        assert stats["totalSignatures"] == 3
        assert stats["totalReuse"] == 3
        assert stats["hitRate"] == 0.5

    @pytest.mark.asyncio
    async def test_different_model_misses(self, session_factory, cache, options, seed):
        seeded = await seed()
        first_writer = FakeWriter()
        other_writer = FakeWriter()
        other_writer.model_name = "another-model"

        first = ChapterGenerationService(session_factory, first_writer, cache, options=options)
        await collect_events(first.create_workflow(seeded.project_id, seeded.chapter_id))
        second = ChapterGenerationService(session_factory, other_writer, cache, options=options)
        events = await collect_events(second.create_workflow(seeded.project_id, seeded.chapter_id))

        assert events[-1].data["cacheHits"] == 0
        assert len(other_writer.calls) == 3


class TestSceneFailures:
    """A failing scene is reported and the session moves on."""

    @pytest.mark.asyncio
    async def test_writer_timeout_fails_one_scene(self, session_factory, cache, options, seed, summary_jobs):
        seeded = await seed()
        writer = FakeWriter(fail_on={1: LLMTimeoutError("模拟超时", "fake-writer")})
        service = ChapterGenerationService(
            session_factory, writer, cache, options=options, enqueue_summary=summary_jobs.append,
        )
        events = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        failed = of_kind(events, EventKind.SCENE_FAILED)
        assert len(failed) == 1
        assert failed[0].data["sceneIndex"] == 1
        assert failed[0].data["type"] == "timeout"
        assert failed[0].data["canRetry"] is True
        assert failed[0].data["recoverable"] is True

        completed = events[-1]
        assert completed.kind is EventKind.COMPLETED
        assert completed.data["success"] is True
        assert completed.data["successfulScenes"] == 2
        assert completed.data["failedScenes"] == 1

        chapter = await load_chapter(session_factory, seeded.chapter_id)
        assert chapter.status == ChapterStatus.PARTIAL.value
        assert chapter.word_count == 120
        assert len(summary_jobs) == 1

    @pytest.mark.asyncio
    async def test_scene_deadline_cuts_stalled_stream(self, session_factory, cache, seed):
        seeded = await seed()
        writer = FakeWriter(hang_on=[0])
        options = GenerationOptions(
            decomposition=DecompositionPolicy(words_per_scene=60, min_words=40, max_words=200),
            word_tolerance=0.5,
            scene_timeout=0.2,
        )
        service = ChapterGenerationService(session_factory, writer, cache, options=options)
        events = await asyncio.wait_for(
            collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id)), timeout=10,
        )

        failed = of_kind(events, EventKind.SCENE_FAILED)
        assert [e.data["sceneIndex"] for e in failed] == [0]
        assert failed[0].data["type"] == "timeout"
        assert events[-1].data["successfulScenes"] == 2
        # 超时的流也被关闭
        assert writer.closed == 3

    @pytest.mark.asyncio
    async def test_all_scenes_failing_marks_chapter_failed(self, session_factory, cache, options, seed, summary_jobs):
        seeded = await seed()
        error = LLMTimeoutError("模拟超时")
        writer = FakeWriter(fail_on={0: error, 1: error, 2: error})
        service = ChapterGenerationService(
            session_factory, writer, cache, options=options, enqueue_summary=summary_jobs.append,
        )
        events = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        assert events[-1].kind is EventKind.COMPLETED
        assert events[-1].data["success"] is False
        assert events[-1].data["failedScenes"] == 3
        chapter = await load_chapter(session_factory, seeded.chapter_id)
        assert chapter.status == ChapterStatus.FAILED.value
        assert summary_jobs == []


class TestReasoning:
    """Provider reasoning is surfaced as thinking markers, never as content."""

    @pytest.mark.asyncio
    async def test_thinking_events_wrap_reasoning(self, session_factory, cache, options, seed):
        seeded = await seed()
        writer = FakeWriter(reasoning=True)
        service = ChapterGenerationService(session_factory, writer, cache, options=options)
        events = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        scene_zero = [e for e in events if e.data.get("sceneIndex") == 0]
        names = kinds(scene_zero)
        assert names[:3] == ["scene_start", "thinking_start", "thinking_end"]
        assert names.count("thinking_start") == 1
        text = "".join(e.data["chunk"] for e in scene_zero if e.kind is EventKind.SCENE_CONTENT_CHUNK)
        assert "人物动机" not in text
        assert text.startswith("林舟、沈月在第1幕")


class TestSessionErrors:
    """Session-level failures end the stream with a single error event."""

    @pytest.mark.asyncio
    async def test_missing_chapter(self, service, seed, registry):
        seeded = await seed()
        workflow = service.create_workflow(seeded.project_id, "no-such-chapter")
        events = await collect_events(workflow)

        assert kinds(events) == ["error"]
        assert events[0].data["type"] == "validation"
        assert events[0].data["error"] == "章节不存在"
        assert isinstance(workflow.error, ResourceNotFoundError)
        assert workflow.state is SessionState.ERROR
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_missing_outline(self, service, seed, session_factory):
        seeded = await seed(with_outline=False)
        events = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        assert kinds(events) == ["connected", "progress", "error"]
        assert events[-1].data["error"] == "章节大纲不存在"
        chapter = await load_chapter(session_factory, seeded.chapter_id)
        assert chapter.status == ChapterStatus.NOT_GENERATED.value

    @pytest.mark.asyncio
    async def test_empty_beats_are_rejected(self, service, seed, writer):
        seeded = await seed(beats=[])
        events = await collect_events(service.create_workflow(seeded.project_id, seeded.chapter_id))

        assert events[-1].kind is EventKind.ERROR
        assert events[-1].data["type"] == "validation"
        assert writer.calls == []

    @pytest.mark.asyncio
    async def test_repairable_outline_still_generates(self, service, seed):
        # stakesDelta 缺失可以自动修复，占位文本不会写进场景计划
        seeded = await seed(stakes_delta=None)
        result = await service.generate(seeded.project_id, seeded.chapter_id)

        assert result["totalScenes"] == 3
        assert result["successfulScenes"] == 3
        assert result["scenes"][-1]["stakesDelta"] == ""

    @pytest.mark.asyncio
    async def test_storage_failure_aborts_session(self, service, seed, session_factory, writer, monkeypatch):
        async def locked(self, instance):
            raise OperationalError("INSERT INTO draft_chunks", {}, Exception("database is locked"))

        monkeypatch.setattr(DraftChunkRepository, "add", locked)
        seeded = await seed()
        workflow = service.create_workflow(seeded.project_id, seeded.chapter_id)
        events = await collect_events(workflow)

        names = kinds(events)
        assert names[-1] == "error"
        assert "scene_failed" not in names
        assert "completed" not in names
        assert events[-1].data["type"] == "network"
        assert isinstance(workflow.error, OperationalError)
        assert workflow.state is SessionState.ERROR
        # 第一个场景落库失败后不再继续生成
        assert len(writer.calls) == 1

        chapter = await load_chapter(session_factory, seeded.chapter_id)
        assert chapter.status == ChapterStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_generate_raises_session_error(self, service, seed):
        seeded = await seed()
        with pytest.raises(ResourceNotFoundError):
            await service.generate(seeded.project_id, "no-such-chapter")


class TestConcurrency:
    """Only one live session per chapter."""

    @pytest.mark.asyncio
    async def test_second_session_is_rejected(self, service, seed, registry):
        seeded = await seed()
        first = service.create_workflow(seeded.project_id, seeded.chapter_id)
        stream = first.run()
        while True:
            event = await stream.__anext__()
            if event.kind is EventKind.SCENE_START:
                break
        assert registry.is_active(seeded.chapter_id)

        second = service.create_workflow(seeded.project_id, seeded.chapter_id)
        rejected = await collect_events(second)
        assert kinds(rejected) == ["error"]
        assert rejected[0].data["type"] == "concurrent-session"
        assert rejected[0].data["canSave"] is False
        assert isinstance(second.error, ConcurrentGenerationError)

        rest = [event async for event in stream]
        assert rest[-1].kind is EventKind.COMPLETED
        assert rest[-1].data["successfulScenes"] == 3
        assert not registry.is_active(seeded.chapter_id)

    @pytest.mark.asyncio
    async def test_generate_raises_on_concurrent_session(self, service, seed, registry):
        seeded = await seed()
        registry.try_acquire(seeded.chapter_id)
        with pytest.raises(ConcurrentGenerationError):
            await service.generate(seeded.project_id, seeded.chapter_id)

    @pytest.mark.asyncio
    async def test_closing_stream_releases_chapter(self, service, seed, registry):
        seeded = await seed()
        stream = service.create_workflow(seeded.project_id, seeded.chapter_id).run()
        await stream.__anext__()
        assert registry.is_active(seeded.chapter_id)

        await stream.aclose()
        assert not registry.is_active(seeded.chapter_id)


class TestCancellation:
    """Cancellation stops before the next scene and keeps completed work."""

    @pytest.mark.asyncio
    async def test_cancel_after_first_scene(self, service, seed, session_factory, summary_jobs):
        seeded = await seed()
        workflow = service.create_workflow(seeded.project_id, seeded.chapter_id)

        events = []
        async for event in workflow.run():
            events.append(event)
            if event.kind is EventKind.SCENE_COMPLETED:
                workflow.cancel()

        completed = events[-1].data
        assert completed["cancelled"] is True
        assert completed["successfulScenes"] == 1
        assert completed["success"] is True
        assert kinds(events).count("scene_start") == 1

        chapter = await load_chapter(session_factory, seeded.chapter_id)
        assert chapter.status == ChapterStatus.PARTIAL.value
        assert chapter.word_count == 60
        assert len(summary_jobs) == 1

    @pytest.mark.asyncio
    async def test_closed_stream_keeps_completed_scenes(self, service, seed, session_factory, summary_jobs, registry):
        # 客户端断开时输出流直接被关闭，不会再有 completed 事件
        seeded = await seed()
        workflow = service.create_workflow(seeded.project_id, seeded.chapter_id)
        stream = workflow.run()
        async for event in stream:
            if event.kind is EventKind.SCENE_COMPLETED:
                break
        await stream.aclose()

        assert workflow.state is SessionState.COMPLETED
        assert workflow.session.cancelled is True
        assert not registry.is_active(seeded.chapter_id)

        chapter = await load_chapter(session_factory, seeded.chapter_id)
        assert chapter.status == ChapterStatus.PARTIAL.value
        assert chapter.word_count == 60
        assert chapter.content.startswith("林舟、沈月在第1幕")
        assert len(summary_jobs) == 1
        assert summary_jobs[0].target_id == seeded.chapter_id

    @pytest.mark.asyncio
    async def test_closed_stream_before_any_scene(self, service, seed, session_factory, summary_jobs):
        seeded = await seed()
        workflow = service.create_workflow(seeded.project_id, seeded.chapter_id)
        stream = workflow.run()
        async for event in stream:
            if event.kind is EventKind.SCENE_START:
                break
        await stream.aclose()

        assert workflow.state is SessionState.ERROR
        chapter = await load_chapter(session_factory, seeded.chapter_id)
        assert chapter.status == ChapterStatus.FAILED.value
        assert summary_jobs == []


class TestSyncGenerate:
    """generate() drains the workflow and returns the session summary."""

    @pytest.mark.asyncio
    async def test_generate_returns_summary(self, service, seed):
        seeded = await seed()
        result = await service.generate(seeded.project_id, seeded.chapter_id)

        assert result["chapterId"] == seeded.chapter_id
        assert result["successfulScenes"] == 3
        assert [scene["purpose"] for scene in result["scenes"]] == list(DEFAULT_BEATS)
        assert [draft["sceneIndex"] for draft in result["drafts"]] == [0, 1, 2]
        assert result["scenes"][0]["focalEntities"] == ["林舟", "沈月"]
        assert result["scenes"][-1]["stakesDelta"] == "林舟决定独自追查信号灯的来历"
