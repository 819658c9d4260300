"""Domain models of the synchronization engine."""

from .entities import IdentityMapping, Section, Tag, TaskItem
from .results import SyncError, SyncPhase, SyncResult, SyncStats, utc_now

__all__ = [
    "TaskItem",
    "Tag",
    "Section",
    "IdentityMapping",
    "SyncPhase",
    "SyncStats",
    "SyncError",
    "SyncResult",
    "utc_now",
]
