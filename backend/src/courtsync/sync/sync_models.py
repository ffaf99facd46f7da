import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class SyncOptions:
    """Options shared by every reconciliation run.

    ``remote_id`` narrows the run to one entity (webhook-triggered jobs).
    """

    remote_id: Optional[str] = None
    modified_since: Optional[str] = None
    max_records: Optional[int] = None
    filters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_job_options(cls, options: Optional[dict], default_max_records: Optional[int] = None):
        options = dict(options or {})
        known = {
            "remote_id": options.pop("remote_id", None),
            "modified_since": options.pop("modified_since", None),
            "max_records": options.pop("max_records", default_max_records),
        }
        return cls(**known, filters=options)


@dataclass
class SyncStats:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    retired: int = 0
    reactivated: int = 0
    text_updated: int = 0
    assignments_created: int = 0
    assignment_misses: int = 0
    errors: int = 0
    error_messages: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    duration_ms: int = 0
    max_error_messages: int = field(default=20, repr=False)
    _started: float = field(default_factory=time.perf_counter, repr=False)

    def record_error(self, message: str) -> None:
        self.errors += 1
        if len(self.error_messages) < self.max_error_messages:
            self.error_messages.append(message)

    def note(self, message: str) -> None:
        if message not in self.notes:
            self.notes.append(message)

    def finish(self) -> "SyncStats":
        self.duration_ms = int((time.perf_counter() - self._started) * 1000)
        return self

    def as_dict(self) -> dict:
        data = asdict(self)
        data.pop("max_error_messages", None)
        data.pop("_started", None)
        return data
