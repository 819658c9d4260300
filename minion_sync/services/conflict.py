"""Resolution of updates whose target was modified since the last pass."""
from __future__ import annotations

import logging
from enum import Enum
from typing import FrozenSet, Optional

from minion_sync.models import IdentityMapping
from minion_sync.services.differ import UpdateAction

LOGGER = logging.getLogger(__name__)


class ConflictStrategy(str, Enum):
    SOURCE_WINS = "source-wins"
    TARGET_WINS = "target-wins"
    MANUAL = "manual"


class ConflictDecision(str, Enum):
    APPLY_SOURCE = "apply-source"
    KEEP_TARGET = "keep-target"
    REPORT = "report"


class ConflictResolver:
    """Applies one ``ConflictStrategy`` to every conflicting update."""

    def __init__(self, strategy: ConflictStrategy) -> None:
        self._strategy = ConflictStrategy(strategy)

    def resolve(self, action: UpdateAction) -> ConflictDecision:
        if self._strategy is ConflictStrategy.SOURCE_WINS:
            decision = ConflictDecision.APPLY_SOURCE
        elif self._strategy is ConflictStrategy.TARGET_WINS:
            decision = ConflictDecision.KEEP_TARGET
        else:
            decision = ConflictDecision.REPORT
        LOGGER.info(
            "Conflict on %s (target %s): %s",
            action.source.id,
            action.target.id,
            decision.value,
        )
        return decision

    @staticmethod
    def accepted_target_mapping(
        action: UpdateAction, fields: Optional[FrozenSet[str]] = None
    ) -> IdentityMapping:
        """Mapping that records the target's current state as the synced one."""
        return IdentityMapping(
            source_id=action.mapping.source_id,
            target_id=action.mapping.target_id,
            last_fingerprint=action.target_fingerprint,
            source_fingerprint=action.source_fingerprint,
            fields=fields if fields is not None else action.mapping.fields,
        )

    @staticmethod
    def describe(action: UpdateAction) -> str:
        return (
            f"Task {action.source.id} ({action.source.name!r}) changed in both stores "
            f"since the last sync; target task {action.target.id} left untouched"
        )


__all__ = ["ConflictStrategy", "ConflictDecision", "ConflictResolver"]
