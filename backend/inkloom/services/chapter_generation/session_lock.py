"""
章节生成会话登记

同一章节同一时刻只允许一个活跃会话。所有操作都在事件循环线程内同步完成，
检查与登记之间没有 await，因此不需要额外加锁。
"""

import logging
from typing import Set

logger = logging.getLogger(__name__)


class ChapterSessionRegistry:
    def __init__(self):
        self._active: Set[str] = set()

    def try_acquire(self, chapter_id: str) -> bool:
        if chapter_id in self._active:
            logger.warning("章节已有活跃的生成会话: chapter=%s", chapter_id)
            return False
        self._active.add(chapter_id)
        return True

    def release(self, chapter_id: str) -> None:
        self._active.discard(chapter_id)

    def is_active(self, chapter_id: str) -> bool:
        return chapter_id in self._active

    def __len__(self) -> int:
        return len(self._active)
