"""Outcome types produced by one sync pass."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class SyncPhase(str, Enum):
    """States of the sync engine."""

    INIT = "init"
    LOADING_STATE = "loading-state"
    FETCHING_SNAPSHOTS = "fetching-snapshots"
    DIFFING = "diffing"
    APPLYING = "applying"
    PERSISTING_STATE = "persisting-state"
    DONE = "done"
    ERROR = "error"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncStats:
    items_checked: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_deleted: int = 0
    items_skipped: int = 0
    conflicts_detected: int = 0
    conflicts_resolved: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "itemsChecked": self.items_checked,
            "itemsCreated": self.items_created,
            "itemsUpdated": self.items_updated,
            "itemsDeleted": self.items_deleted,
            "itemsSkipped": self.items_skipped,
            "conflictsDetected": self.conflicts_detected,
            "conflictsResolved": self.conflicts_resolved,
        }


@dataclass
class SyncError:
    """Failure of a single item, collected instead of aborting the pass."""

    item_id: Optional[str]
    phase: str
    message: str
    kind: str = "unknown"
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "itemId": self.item_id,
            "phase": self.phase,
            "message": self.message,
            "kind": self.kind,
            "occurredAt": self.occurred_at.isoformat(),
        }


@dataclass
class SyncResult:
    success: bool
    stats: SyncStats
    errors: List[SyncError]
    duration_ms: int
    direction: str = "one-way"
    backends: List[str] = field(default_factory=list)
    dry_run: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "direction": self.direction,
            "backends": list(self.backends),
            "dryRun": self.dry_run,
            "stats": self.stats.to_dict(),
            "errors": [error.to_dict() for error in self.errors],
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationMs": self.duration_ms,
        }


__all__ = ["SyncPhase", "SyncStats", "SyncError", "SyncResult", "utc_now"]
