from courtsync.database.tables.base_class import Base, BasePublic
from courtsync.database.tables.court_assignment_table import CourtAssignments
from courtsync.database.tables.court_table import Courts
from courtsync.database.tables.decision_table import Decisions
from courtsync.database.tables.judge_table import JudgePositions, Judges
from courtsync.database.tables.processed_webhook_table import ProcessedWebhooks
from courtsync.database.tables.sync_job_table import SyncJobs

__all__ = [
    "Base",
    "BasePublic",
    "CourtAssignments",
    "Courts",
    "Decisions",
    "JudgePositions",
    "Judges",
    "ProcessedWebhooks",
    "SyncJobs",
]
