from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RateLimitUsagePublic(BaseModel):
    current_count: int
    limit: int
    remaining: int
    utilization_percent: float
    window_seconds: float
    reset_at: datetime


class CircuitSnapshotPublic(BaseModel):
    service: str
    state: str
    failures: int
    open_until: Optional[datetime] = None


class RateLimitStatus(BaseModel):
    rate_limit: RateLimitUsagePublic
    circuit: CircuitSnapshotPublic
