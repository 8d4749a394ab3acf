"""
摘要任务队列

基于 asyncio.Queue 的只追加工作队列，由若干工作协程独立拉取任务。
投递语义为至少一次：同一目标的任务可能被执行多次，由摘要写入的整体覆盖保证幂等。
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ...core.constants import SummaryScope
from ...models.mixins import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SummaryJob:
    """一次摘要任务：作用范围 + 目标ID + 入队时间"""

    scope: SummaryScope
    target_id: str
    project_id: Optional[str] = None
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enqueued_at: datetime = field(default_factory=utc_now)


JobHandler = Callable[[SummaryJob], Awaitable[Dict[str, Any]]]


class SummaryQueue:
    """
    摘要任务队列

    - enqueue() 只追加，从不阻塞调用方
    - start() 启动 N 个工作协程，stop() 取消并等待它们退出
    - 任务处理器自行负责重试与停放，队列只统计结果
    """

    def __init__(self, handler: JobHandler, workers: int = 1):
        if workers < 1:
            raise ValueError("工作协程数量必须大于0")
        self._handler = handler
        self._worker_count = workers
        self._queue: "asyncio.Queue[SummaryJob]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

        self._active_count = 0
        self._total_processed = 0
        self._total_failed = 0

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def enqueue(self, job: SummaryJob) -> None:
        self._queue.put_nowait(job)
        logger.info(
            "摘要任务已入队: job=%s scope=%s target=%s queued=%d",
            job.job_id, job.scope.value, job.target_id, self._queue.qsize(),
        )

    def start(self) -> None:
        if self.is_running:
            return
        self._tasks = [
            asyncio.create_task(self._worker_loop(index), name=f"summary-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info("摘要队列已启动: workers=%d", self._worker_count)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(
            "摘要队列已停止: processed=%d failed=%d pending=%d",
            self._total_processed, self._total_failed, self._queue.qsize(),
        )

    async def join(self) -> None:
        """等待当前所有已入队任务处理完毕"""
        await self._queue.join()

    async def _worker_loop(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            self._active_count += 1
            try:
                result = await self._handler(job)
                if result.get("success"):
                    self._total_processed += 1
                else:
                    self._total_failed += 1
            except Exception as exc:
                # 处理器内部已做重试与停放，走到这里说明停放本身失败
                self._total_failed += 1
                logger.error(
                    "摘要工作协程 %d 处理任务异常: job=%s target=%s error=%s",
                    index, job.job_id, job.target_id, exc, exc_info=True,
                )
            finally:
                self._active_count -= 1
                self._queue.task_done()

    def get_status(self) -> Dict[str, int]:
        return {
            "queued": self._queue.qsize(),
            "active": self._active_count,
            "workers": self._worker_count if self.is_running else 0,
            "total_processed": self._total_processed,
            "total_failed": self._total_failed,
        }
