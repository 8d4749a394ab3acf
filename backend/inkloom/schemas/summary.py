"""
摘要流水线相关的Pydantic数据模型
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from .base import CamelModel


class ResummarizeResponse(CamelModel):
    job_id: str
    target_type: str
    target_id: str
    queued: int = Field(..., description="入队后排队中的任务数")


class FailedSummaryJobSchema(CamelModel):
    job_id: str
    kind: str
    target_id: str
    project_id: Optional[str] = None
    attempts: int
    last_error: Optional[str] = None
    enqueued_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None


class FailedSummaryJobList(CamelModel):
    jobs: List[FailedSummaryJobSchema] = Field(default_factory=list)
