"""
章节生成工作流

一次会话的完整流程：

    IDLE -> CONNECTING -> DECOMPOSING -> (SCENE_GENERATING -> VALIDATING
    [-> REPAIRING] -> PERSISTING)* -> PERSISTING -> COMPLETED

任何会话级错误都会进入 ERROR 并输出 error 事件；单个场景失败只输出
scene_failed，工作流继续处理下一个场景。每个会话恰好以 completed 或 error
之一结束。

数据库约定：工作流持有自己的会话，执行缓存使用独立会话，
因此每次调用缓存之前都必须先提交本地写入，避免 SQLite 写锁互相等待。
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...core.constants import ChapterStatus, LLMConstants, SceneConstants, SessionState, SummaryScope
from ...core.errors import classify_error
from ...exceptions import (
    ConcurrentGenerationError,
    LLMServiceError,
    LLMTimeoutError,
    PlanValidationError,
    ResourceNotFoundError,
)
from ...models import DraftChunk, SceneFrame
from ...models.mixins import utc_now
from ...repositories import (
    ChapterOutlineRepository,
    ChapterRepository,
    CharacterRepository,
    DraftChunkRepository,
    NovelRepository,
    SceneFrameRepository,
    SummaryDigestRepository,
)
from ..execution_cache import (
    ExecutionCacheService,
    QualityScorePolicy,
    SignatureInput,
    SignatureRules,
    compute_signature,
)
from ..queue import SummaryJob
from ..validation import PlanKind, PlanValidator, ProseRuleChecker, RepairEngine, clean_prose
from ..validation.validator import is_blank
from . import events
from .context import DraftRecord, GenerationSession, ScenePlan
from .decomposer import DecompositionPolicy, SceneDecomposer
from .events import GenerationEvent
from .prompt_builder import ScenePromptBuilder
from .reasoning_filter import CONTENT, THINKING_START, ReasoningFilter, Segment
from .session_lock import ChapterSessionRegistry
from ...utils.exception_helpers import log_exception
from ...utils.text_utils import collapse_whitespace, extract_tail, smart_context_window, truncate

logger = logging.getLogger(__name__)


class SceneWriter(Protocol):
    """流式生成场景正文的模型端，LLMService 即为默认实现"""

    model_name: str

    def stream_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: Optional[int] = None,
        timeout: float = ...,
    ) -> AsyncIterator[Dict[str, Optional[str]]]: ...


@dataclass(frozen=True)
class GenerationOptions:
    """一次生成会话使用的全部可调参数"""

    decomposition: DecompositionPolicy = field(default_factory=DecompositionPolicy)
    quality: QualityScorePolicy = field(default_factory=QualityScorePolicy)
    signature: SignatureRules = field(default_factory=SignatureRules)
    word_tolerance: float = 0.15
    temperature: float = 0.75
    scene_timeout: float = 180.0

    @classmethod
    def from_settings(cls, settings) -> "GenerationOptions":
        return cls(
            decomposition=DecompositionPolicy.from_settings(settings),
            quality=QualityScorePolicy.from_settings(settings),
            signature=SignatureRules.from_settings(settings),
            word_tolerance=settings.scene_word_tolerance,
            temperature=settings.llm_temp_writing,
            scene_timeout=settings.llm_scene_timeout,
        )


@dataclass
class ChapterContext:
    """连接阶段读取的只读上下文，不持有 ORM 实例"""

    chapter_title: str
    system_prompt: str
    previous_tail: str = ""
    prior_digest: str = ""
    character_notes: Dict[str, str] = field(default_factory=dict)
    frame_ids: List[str] = field(default_factory=list)


class ChapterGenerationWorkflow:
    """
    章节生成工作流

    使用方式：
        workflow = service.create_workflow(project_id, chapter_id)
        async for event in workflow.run():
            ...

    run() 只能调用一次；cancel() 在当前场景结束后生效。
    """

    def __init__(
        self,
        *,
        project_id: str,
        chapter_id: str,
        session_factory: async_sessionmaker[AsyncSession],
        writer: SceneWriter,
        cache: ExecutionCacheService,
        registry: ChapterSessionRegistry,
        options: GenerationOptions = GenerationOptions(),
        prompt_builder: Optional[ScenePromptBuilder] = None,
        validator: Optional[PlanValidator] = None,
        repair_engine: Optional[RepairEngine] = None,
        enqueue_summary: Optional[Callable[[SummaryJob], None]] = None,
    ):
        self.session = GenerationSession(project_id=project_id, chapter_id=chapter_id)
        self.session_factory = session_factory
        self.writer = writer
        self.cache = cache
        self.registry = registry
        self.options = options
        self.decomposer = SceneDecomposer(options.decomposition)
        self.prompt_builder = prompt_builder or ScenePromptBuilder()
        self.validator = validator or PlanValidator()
        self.repair_engine = repair_engine or RepairEngine()
        self.rule_checker = ProseRuleChecker(options.word_tolerance)
        self.enqueue_summary = enqueue_summary

        self.error: Optional[BaseException] = None
        self._cancel_requested = False
        self._status_claimed = False

    @property
    def project_id(self) -> str:
        return self.session.project_id

    @property
    def chapter_id(self) -> str:
        return self.session.chapter_id

    @property
    def state(self) -> SessionState:
        return self.session.state

    def cancel(self) -> None:
        """请求取消：当前场景完成后不再开始新场景，已完成的场景照常保存"""
        if not self._cancel_requested:
            logger.info("收到取消请求: chapter=%s", self.chapter_id)
        self._cancel_requested = True

    # ------------------------------------------------------------------
    # 主流程
    # ------------------------------------------------------------------
    async def run(self) -> AsyncIterator[GenerationEvent]:
        self.session.transition(SessionState.CONNECTING)

        if not self.registry.try_acquire(self.chapter_id):
            self.error = ConcurrentGenerationError(self.chapter_id)
            self.session.transition(SessionState.ERROR)
            yield events.error(classify_error(self.error))
            return

        try:
            async with self.session_factory() as db, aclosing(self._run_stages(db)) as stages:
                async for event in stages:
                    yield event
        finally:
            self.registry.release(self.chapter_id)

    async def _run_stages(self, db: AsyncSession) -> AsyncIterator[GenerationEvent]:
        session = self.session
        try:
            ctx = await self._connect(db)
            yield events.connected(self.project_id, self.chapter_id)

            session.transition(SessionState.DECOMPOSING)
            yield events.progress(5, "decompose", "正在拆分场景...")
            await self._decompose(db, ctx)
            yield events.scenes_decomposed(session.scenes, session.progress_at(0))

            for scene in session.scenes:
                if self._cancel_requested:
                    session.cancelled = True
                    logger.info(
                        "生成已取消，跳过剩余场景: chapter=%s completed=%d remaining=%d",
                        self.chapter_id, scene.index, session.total_scenes - scene.index,
                    )
                    break

                session.current_scene = scene.index
                session.transition(SessionState.SCENE_GENERATING)
                yield events.scene_start(scene, session.total_scenes, session.progress_at(scene.index))

                try:
                    async with aclosing(self._generate_scene(db, scene, ctx)) as scene_events:
                        async for event in scene_events:
                            yield event
                except (LLMServiceError, PlanValidationError) as exc:
                    # 只有模型与校验失败按单场景处理，存储故障交给会话级处理
                    await db.rollback()
                    session.failed_scenes += 1
                    log_exception(
                        exc, "生成场景", logger_instance=logger, level="warning",
                        chapter_id=self.chapter_id, scene_index=scene.index,
                    )
                    yield events.scene_failed(
                        scene.index, classify_error(exc), session.progress_at(scene.index + 1)
                    )

            session.transition(SessionState.PERSISTING)
            yield events.progress(95, "persist", "正在保存章节...")
            await self._finalize(db)

            session.transition(SessionState.COMPLETED)
            logger.info(
                "章节生成完成: chapter=%s scenes=%d/%d words=%d cache_hits=%d cancelled=%s",
                self.chapter_id, session.successful_scenes, session.total_scenes,
                session.word_count, session.cache_hits, session.cancelled,
            )
            yield events.completed(session)

        except (GeneratorExit, asyncio.CancelledError):
            # 客户端断开：输出流被关闭或任务被取消，此时已不能再输出事件
            if not session.state.is_terminal:
                self._mark_interrupted()
                await asyncio.shield(self._finalize_interrupted(db))
            raise

        except Exception as exc:
            self.error = exc
            log_exception(exc, "章节生成", logger_instance=logger, chapter_id=self.chapter_id)
            await self._reset_chapter_status(db)
            session.transition(SessionState.ERROR)
            yield events.error(classify_error(exc))

    # ------------------------------------------------------------------
    # 连接与拆分
    # ------------------------------------------------------------------
    async def _connect(self, db: AsyncSession) -> ChapterContext:
        project = await NovelRepository(db).get_by_id(self.project_id)
        if project is None:
            raise ResourceNotFoundError("项目", self.project_id)

        chapter_repo = ChapterRepository(db)
        chapter = await chapter_repo.get_in_project(self.project_id, self.chapter_id)
        if chapter is None:
            raise ResourceNotFoundError("章节", self.chapter_id)

        ctx = ChapterContext(
            chapter_title=chapter.title,
            system_prompt=self.prompt_builder.build_system_prompt(project.tone_profile),
        )

        previous = await chapter_repo.get_previous(chapter)
        if previous is not None:
            ctx.previous_tail = extract_tail(previous.content, SceneConstants.PREVIOUS_CHAPTER_TAIL_CHARS)
            digest = await SummaryDigestRepository(db).get_for_target(SummaryScope.CHAPTER.value, previous.id)
            if digest is not None:
                ctx.prior_digest = digest.content or ""

        logger.info(
            "章节生成会话开始: project=%s chapter=%s has_previous=%s has_digest=%s",
            self.project_id, self.chapter_id, previous is not None, bool(ctx.prior_digest),
        )
        return ctx

    async def _decompose(self, db: AsyncSession, ctx: ChapterContext) -> None:
        outline = await ChapterOutlineRepository(db).get_by_chapter(self.chapter_id)
        if outline is None:
            raise ResourceNotFoundError("章节大纲", self.chapter_id)

        chapter = await ChapterRepository(db).get_by_id(self.chapter_id)
        plan = self._validated_chapter_plan([{
            "title": outline.title or chapter.title,
            "oneLiner": outline.one_liner,
            "beats": outline.beats,
            "requiredEntities": outline.required_entities,
            "stakesDelta": outline.stakes_delta,
            "orderIndex": chapter.order_index,
        }])

        beats = plan.get("beats") if isinstance(plan.get("beats"), list) else []
        beats = [str(beat) for beat in beats if not is_blank(beat) and beat != SceneConstants.PLACEHOLDER_TEXT]
        if not beats:
            raise PlanValidationError("章节大纲缺少可用的节拍，无法拆分场景", f"chapter={self.chapter_id}")

        entities = plan.get("requiredEntities") if isinstance(plan.get("requiredEntities"), list) else []
        stakes = plan.get("stakesDelta") or ""
        if stakes == SceneConstants.PLACEHOLDER_TEXT:
            stakes = ""

        scenes = self.decomposer.decompose(
            beats,
            required_entities=[str(name) for name in entities],
            entry_state=outline.entry_state or "",
            exit_state=outline.exit_state or "",
            stakes_delta=str(stakes),
        )
        self.session.scenes = scenes

        frames = await SceneFrameRepository(db).replace_for_chapter(self.chapter_id, [
            SceneFrame(
                chapter_id=self.chapter_id,
                scene_index=scene.index,
                purpose=scene.purpose,
                beats=list(scene.beats),
                focal_entities=list(scene.focal_entities),
                entry_state=scene.entry_state,
                exit_state=scene.exit_state,
                stakes_delta=scene.stakes_delta,
                target_words=scene.target_words,
            )
            for scene in scenes
        ])
        ctx.frame_ids = [frame.id for frame in frames]

        names = sorted({name for scene in scenes for name in scene.focal_entities})
        for character in await CharacterRepository(db).list_by_names(self.project_id, names):
            parts = [character.role, character.short_motivation, character.personality]
            ctx.character_notes[character.name] = "；".join(part for part in parts if part)

        chapter.status = ChapterStatus.GENERATING.value
        await db.commit()
        self._status_claimed = True

        logger.info(
            "场景拆分完成: chapter=%s beats=%d scenes=%d target_words=%s",
            self.chapter_id, len(beats), len(scenes), [scene.target_words for scene in scenes],
        )

    def _validated_chapter_plan(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """校验章节计划并尝试自动修复，返回修复后的唯一条目"""
        violations = self.validator.validate(items, PlanKind.CHAPTERS)
        if not violations:
            return items[0]

        result = self.repair_engine.repair(items, violations)
        if not result.success or not result.repaired:
            raise PlanValidationError("章节大纲格式错误，无法自动修复", result.message)

        remaining = self.validator.validate(result.repaired, PlanKind.CHAPTERS)
        logger.info(
            "章节大纲已自动修复: chapter=%s %s remaining=%d",
            self.chapter_id, result.message, len(remaining),
        )
        return result.repaired[0]

    # ------------------------------------------------------------------
    # 单场景
    # ------------------------------------------------------------------
    def _previous_content(self, scene: ScenePlan, ctx: ChapterContext) -> str:
        if scene.index == 0:
            return ctx.previous_tail
        written = "\n\n".join(draft.content for draft in self.session.drafts)
        return smart_context_window(written, SceneConstants.CONTEXT_WINDOW_CHARS)

    async def _generate_scene(
        self,
        db: AsyncSession,
        scene: ScenePlan,
        ctx: ChapterContext,
    ) -> AsyncIterator[GenerationEvent]:
        session = self.session
        previous = self._previous_content(scene, ctx)
        max_tokens = int(scene.target_words * LLMConstants.SCENE_MAX_TOKENS_FACTOR)

        signature = compute_signature(SignatureInput(
            project_id=self.project_id,
            chapter_id=self.chapter_id,
            scene_index=scene.index,
            purpose=scene.purpose,
            beats=scene.beats,
            required_entities=scene.focal_entities,
            entry_state=scene.entry_state,
            exit_state=scene.exit_state,
            stakes_delta=scene.stakes_delta,
            target_words=scene.target_words,
            previous_content=previous,
            prior_digest=ctx.prior_digest,
            model=self.writer.model_name,
            temperature=self.options.temperature,
            max_tokens=max_tokens,
        ), self.options.signature)

        entry = await self.cache.lookup(signature)
        if self.cache.is_usable(entry):
            try:
                entry = await self.cache.record_hit(signature)
            except ResourceNotFoundError:
                # 查询之后条目被清理，按未命中处理
                entry = None
        else:
            entry = None

        if entry is not None:
            content = entry.content
            yield events.content_chunk(scene.index, content)
        else:
            pieces: List[str] = []
            user_prompt = self.prompt_builder.build_scene_prompt(
                scene,
                total_scenes=session.total_scenes,
                chapter_title=ctx.chapter_title,
                character_notes=ctx.character_notes,
                previous_content=previous,
                prior_digest=ctx.prior_digest,
            )
            stream = self._stream_scene(scene, ctx.system_prompt, user_prompt, max_tokens, pieces)
            async with aclosing(stream) as stream_events:
                async for event in stream_events:
                    yield event
            content = clean_prose("".join(pieces))
            if not content:
                raise LLMServiceError("AI 未返回有效的场景正文", self.writer.model_name)

        session.transition(SessionState.VALIDATING)
        check = self.rule_checker.check(
            content,
            target_words=scene.target_words,
            focal_entities=scene.focal_entities,
            context=previous,
        )
        if entry is not None:
            quality = entry.quality_score
        else:
            quality = self.options.quality.score(
                errors=len(check.errors),
                warnings=len(check.warnings),
                word_count=check.word_count,
                target_words=scene.target_words,
                passed=check.passed,
            )

        record = {
            "title": scene.purpose,
            "oneLiner": truncate(collapse_whitespace(content), SceneConstants.LOCAL_SUMMARY_CHARS),
            "beats": list(scene.beats),
            "requiredEntities": list(scene.focal_entities),
            "orderIndex": scene.index,
        }
        violations = self.validator.validate([record], PlanKind.SCENES)
        if any(violation.auto_fixable for violation in violations):
            session.transition(SessionState.REPAIRING)
            result = self.repair_engine.repair([record], violations)
            if result.success and result.repaired:
                record = result.repaired[0]
                violations = self.validator.validate([record], PlanKind.SCENES)

        session.transition(SessionState.PERSISTING)
        chunk = await DraftChunkRepository(db).add(DraftChunk(
            scene_id=ctx.frame_ids[scene.index],
            chapter_id=self.chapter_id,
            content=content,
            word_count=check.word_count,
            local_summary=record.get("oneLiner"),
            signature=signature,
            cache_hit=entry is not None,
            quality_score=quality,
            rule_checks_passed=check.passed,
            warnings=list(check.warnings),
            violations=[violation.model_dump(mode="json", by_alias=True) for violation in violations],
        ))
        draft = DraftRecord(
            id=chunk.id,
            scene_index=scene.index,
            content=content,
            word_count=check.word_count,
            cache_hit=entry is not None,
            quality_score=quality,
            rule_checks_passed=check.passed,
            warnings=list(check.warnings),
            violations=list(chunk.violations or []),
        )
        await db.commit()

        if entry is None:
            try:
                await self.cache.record_miss(signature, content, quality)
            except SQLAlchemyError as exc:
                # 草稿已保存，缓存写入失败只影响以后的复用
                log_exception(exc, "写入执行缓存", logger_instance=logger, level="warning", scene_index=scene.index)

        session.drafts.append(draft)
        session.cache_hits += 1 if draft.cache_hit else 0
        session.rule_checks_passed += 1 if check.passed else 0
        session.total_warnings += len(check.warnings)

        logger.info(
            "场景完成: chapter=%s scene=%d words=%d cache_hit=%s quality=%d passed=%s errors=%s",
            self.chapter_id, scene.index, draft.word_count, draft.cache_hit, quality, check.passed, check.errors,
        )
        yield events.scene_completed(draft, session.progress_at(scene.index + 1))

    async def _stream_scene(
        self,
        scene: ScenePlan,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        sink: List[str],
    ) -> AsyncIterator[GenerationEvent]:
        """流式调用模型，正文片段写入 sink，整个场景受同一个截止时间约束"""
        timeout = self.options.scene_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        reasoning = ReasoningFilter()

        stream = self.writer.stream_text(
            system_prompt,
            user_prompt,
            temperature=self.options.temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        iterator = stream.__aiter__()
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise LLMTimeoutError(f"场景生成超过 {timeout:.0f} 秒", self.writer.model_name)
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as exc:
                    raise LLMTimeoutError(f"场景生成超过 {timeout:.0f} 秒", self.writer.model_name) from exc

                if chunk.get("finish_reason") == "length":
                    logger.warning("场景输出被截断: chapter=%s scene=%d", self.chapter_id, scene.index)
                segments = reasoning.feed(chunk.get("content"), chunk.get("reasoning_content"))
                for event in self._segment_events(scene.index, segments, sink):
                    yield event

            for event in self._segment_events(scene.index, reasoning.flush(), sink):
                yield event
        finally:
            close = getattr(iterator, "aclose", None)
            if close is not None:
                await close()

    @staticmethod
    def _segment_events(scene_index: int, segments: List[Segment], sink: List[str]) -> List[GenerationEvent]:
        result = []
        for kind, text in segments:
            if kind == CONTENT:
                sink.append(text)
                result.append(events.content_chunk(scene_index, text))
            elif kind == THINKING_START:
                result.append(events.thinking_start(scene_index))
            else:
                result.append(events.thinking_end(scene_index))
        return result

    # ------------------------------------------------------------------
    # 收尾
    # ------------------------------------------------------------------
    def _final_status(self) -> ChapterStatus:
        session = self.session
        if session.successful_scenes == 0:
            return ChapterStatus.FAILED
        if session.failed_scenes or session.cancelled or session.successful_scenes < session.total_scenes:
            return ChapterStatus.PARTIAL
        return ChapterStatus.COMPLETED

    async def _finalize(self, db: AsyncSession) -> None:
        session = self.session
        repo = ChapterRepository(db)
        chapter = await repo.get_by_id(self.chapter_id)
        status = self._final_status()
        await repo.save_generated_content(
            chapter,
            content="\n\n".join(draft.content for draft in session.drafts),
            word_count=session.word_count,
            status=status.value,
            generated_at=utc_now(),
        )
        await db.commit()
        self._status_claimed = False

        if session.successful_scenes and self.enqueue_summary is not None:
            self.enqueue_summary(SummaryJob(SummaryScope.CHAPTER, self.chapter_id, project_id=self.project_id))

    def _mark_interrupted(self) -> None:
        """中断即取消：已有定稿场景时按部分完成结束，否则进入 ERROR"""
        session = self.session
        session.cancelled = True
        logger.info(
            "生成流被中断: chapter=%s state=%s completed=%d/%d",
            self.chapter_id, session.state.value, session.successful_scenes, session.total_scenes,
        )
        if session.drafts:
            if session.state is not SessionState.PERSISTING:
                session.transition(SessionState.PERSISTING)
            session.transition(SessionState.COMPLETED)
        else:
            session.transition(SessionState.ERROR)

    async def _finalize_interrupted(self, db: AsyncSession) -> None:
        """
        中断后的收尾

        工作流自己的会话可能停在任意一次 await 上，先回滚释放写锁，
        再用独立会话保存已提交的场景（部分完成）或恢复章节状态。
        """
        try:
            await db.rollback()
        except SQLAlchemyError as exc:
            log_exception(exc, "回滚中断的会话", logger_instance=logger, level="warning", chapter_id=self.chapter_id)

        if not self._status_claimed:
            return
        try:
            async with self.session_factory() as fresh:
                if self.session.drafts:
                    await self._finalize(fresh)
                else:
                    await self._reset_chapter_status(fresh)
        except SQLAlchemyError as exc:
            log_exception(exc, "保存中断的章节", logger_instance=logger, level="warning", chapter_id=self.chapter_id)

    async def _reset_chapter_status(self, db: AsyncSession) -> None:
        """会话级错误后恢复章节状态，避免章节一直停留在生成中"""
        if not self._status_claimed:
            return
        try:
            await db.rollback()
            chapter = await ChapterRepository(db).get_by_id(self.chapter_id)
            if chapter is not None:
                status = ChapterStatus.PARTIAL if self.session.drafts else ChapterStatus.FAILED
                chapter.status = status.value
                await db.commit()
                logger.info("已恢复章节状态: chapter=%s status=%s", self.chapter_id, status.value)
        except SQLAlchemyError as exc:
            log_exception(exc, "恢复章节状态", logger_instance=logger, level="warning", chapter_id=self.chapter_id)
        finally:
            self._status_claimed = False
