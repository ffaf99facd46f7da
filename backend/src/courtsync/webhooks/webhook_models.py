from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class WebhookEvent(str, Enum):
    JUDGE_CREATED = "judge.created"
    JUDGE_UPDATED = "judge.updated"
    COURT_UPDATED = "court.updated"
    DECISION_CREATED = "decision.created"
    DECISION_UPDATED = "decision.updated"
    SYNC_REQUESTED = "sync.requested"


class WebhookPayload(BaseModel):
    webhook_id: str = Field(min_length=1)
    event: str = Field(min_length=1)
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("webhook_id", mode="before")
    @classmethod
    def coerce_numeric_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("timestamp")
    @classmethod
    def ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class WebhookOutcome(str, Enum):
    ENQUEUED = "enqueued"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


class WebhookResponse(BaseModel):
    status: WebhookOutcome
    job_id: Optional[UUID] = None
