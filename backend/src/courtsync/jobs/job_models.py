from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SyncJobType(str, Enum):
    JUDGE = "judge"
    COURT = "court"
    DECISION = "decision"
    CLEANUP = "cleanup"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


class JobSource(str, Enum):
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    MANUAL = "manual"


class SyncJobCreate(BaseModel):
    job_type: SyncJobType
    priority: int = 100
    options: dict[str, Any] = Field(default_factory=dict)
    run_after: Optional[datetime] = None
    source: JobSource = JobSource.MANUAL


class SyncJob(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: SyncJobType
    priority: int
    options: dict[str, Any] = Field(default_factory=dict)
    state: JobState
    source: JobSource
    run_after: datetime
    cancel_requested: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class QueueStats(BaseModel):
    pending: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    by_type: dict[str, dict[str, int]] = Field(default_factory=dict)
    oldest_pending_at: Optional[datetime] = None
    oldest_pending_age_seconds: Optional[float] = None


# Requests for the queue control API


class EnqueueJobRequest(BaseModel):
    job_type: SyncJobType
    priority: int = 100
    options: dict[str, Any] = Field(default_factory=dict)
    run_after: Optional[datetime] = None


class EnqueueJobResponse(BaseModel):
    job_id: UUID


class CancelJobsRequest(BaseModel):
    job_type: Optional[SyncJobType] = None
    job_id: Optional[UUID] = None


class CancelJobsResponse(BaseModel):
    cancelled: int
