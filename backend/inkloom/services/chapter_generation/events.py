"""
生成事件

工作流对外输出的有序事件序列。每个事件都有固定的类型名与载荷字段，
SSE 适配层把它们原样写成 `event:` / `data:` 帧，同步接口则只读取最终统计。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from ...core.errors import ErrorInfo
from ...utils.sse_helpers import sse_event


class EventKind(str, Enum):
    CONNECTED = "connected"
    PROGRESS = "progress"
    SCENES_DECOMPOSED = "scenes_decomposed"
    SCENE_START = "scene_start"
    THINKING_START = "thinking_start"
    THINKING_END = "thinking_end"
    SCENE_CONTENT_CHUNK = "scene_content_chunk"
    SCENE_COMPLETED = "scene_completed"
    SCENE_FAILED = "scene_failed"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (EventKind.COMPLETED, EventKind.ERROR)


@dataclass(frozen=True)
class GenerationEvent:
    kind: EventKind
    data: Dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        return sse_event(self.kind.value, self.data)


def connected(project_id: str, chapter_id: str) -> GenerationEvent:
    return GenerationEvent(EventKind.CONNECTED, {
        "projectId": project_id,
        "chapterId": chapter_id,
        "progress": 0,
    })


def progress(value: int, step: str, message: str) -> GenerationEvent:
    return GenerationEvent(EventKind.PROGRESS, {
        "progress": value,
        "step": step,
        "message": message,
    })


def scenes_decomposed(scenes, value: int) -> GenerationEvent:
    return GenerationEvent(EventKind.SCENES_DECOMPOSED, {
        "totalScenes": len(scenes),
        "scenes": [
            {"index": scene.index, "purpose": scene.purpose, "targetWords": scene.target_words}
            for scene in scenes
        ],
        "progress": value,
    })


def scene_start(scene, total: int, value: int) -> GenerationEvent:
    return GenerationEvent(EventKind.SCENE_START, {
        "sceneIndex": scene.index,
        "totalScenes": total,
        "scenePurpose": scene.purpose,
        "targetWords": scene.target_words,
        "progress": value,
    })


def thinking_start(scene_index: int) -> GenerationEvent:
    return GenerationEvent(EventKind.THINKING_START, {"sceneIndex": scene_index})


def thinking_end(scene_index: int) -> GenerationEvent:
    return GenerationEvent(EventKind.THINKING_END, {"sceneIndex": scene_index})


def content_chunk(scene_index: int, chunk: str) -> GenerationEvent:
    return GenerationEvent(EventKind.SCENE_CONTENT_CHUNK, {"sceneIndex": scene_index, "chunk": chunk})


def scene_completed(draft, value: int) -> GenerationEvent:
    return GenerationEvent(EventKind.SCENE_COMPLETED, {
        "sceneIndex": draft.scene_index,
        "draftId": draft.id,
        "wordCount": draft.word_count,
        "cacheHit": draft.cache_hit,
        "qualityScore": draft.quality_score,
        "ruleChecksPassed": draft.rule_checks_passed,
        "warnings": list(draft.warnings),
        "progress": value,
    })


def scene_failed(scene_index: int, info: ErrorInfo, value: int) -> GenerationEvent:
    return GenerationEvent(EventKind.SCENE_FAILED, {
        "sceneIndex": scene_index,
        **info.to_payload(),
        "progress": value,
    })


def completed(session) -> GenerationEvent:
    message = (
        f"{session.rule_checks_passed}/{session.total_scenes} 个场景通过检查，"
        f"{session.total_warnings} 条警告"
    )
    return GenerationEvent(EventKind.COMPLETED, {
        "success": session.successful_scenes > 0,
        "projectId": session.project_id,
        "chapterId": session.chapter_id,
        "wordCount": session.word_count,
        "totalScenes": session.total_scenes,
        "successfulScenes": session.successful_scenes,
        "failedScenes": session.failed_scenes,
        "cacheHits": session.cache_hits,
        "ruleChecksPassed": session.rule_checks_passed,
        "totalWarnings": session.total_warnings,
        "cancelled": session.cancelled,
        "message": message,
        "progress": 100,
    })


def error(info: ErrorInfo) -> GenerationEvent:
    return GenerationEvent(EventKind.ERROR, info.to_payload())
