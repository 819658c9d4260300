"""Computes the actions that bring the target in line with the source.

The differ is a pure function over two already-fetched snapshots and the
mappings persisted by the previous pass. It never talks to a backend.

* ``creates`` - source items without a mapping, or whose mapped target item
  no longer exists (the stale mapping is replaced on success).
* ``updates`` - mapped source items whose fingerprint moved since the last
  pass while the target item still exists. ``target_modified`` flags the
  ones whose target was changed independently; those go through the
  conflict resolver.
* ``deletes`` - mappings whose source item disappeared.
* ``rebaselines`` - mappings written over another field set whose source and
  target already agree on the current one; only the mapping is refreshed.

When the synced field set changed since a mapping was written its stored
fingerprints say nothing about either side, so a differing pair becomes an
update that is never treated as a conflict.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from minion_sync.models import IdentityMapping, TaskItem
from minion_sync.services.fingerprint import fingerprint

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncFilter:
    """Restricts which source items are created or updated."""

    completed: Optional[bool] = None
    tags: Sequence[str] = ()
    sections: Sequence[str] = ()

    def matches(self, item: TaskItem) -> bool:
        if self.completed is not None and item.completed != self.completed:
            return False
        if self.tags and not item.tags.intersection(self.tags):
            return False
        if self.sections and item.section not in self.sections:
            return False
        return True


@dataclass(slots=True)
class CreateAction:
    source: TaskItem
    fingerprint: str
    stale_mapping: Optional[IdentityMapping] = None

    @property
    def item_id(self) -> str:
        return self.source.id


@dataclass(slots=True)
class UpdateAction:
    source: TaskItem
    target: TaskItem
    mapping: IdentityMapping
    source_fingerprint: str
    target_fingerprint: str
    fields_changed: bool = False

    @property
    def item_id(self) -> str:
        return self.source.id

    @property
    def target_modified(self) -> bool:
        if self.fields_changed:
            return False
        return self.target_fingerprint != self.mapping.last_fingerprint


@dataclass(slots=True)
class DeleteAction:
    mapping: IdentityMapping
    target_exists: bool = True

    @property
    def item_id(self) -> str:
        return self.mapping.source_id


@dataclass
class SyncPlan:
    creates: List[CreateAction] = field(default_factory=list)
    updates: List[UpdateAction] = field(default_factory=list)
    deletes: List[DeleteAction] = field(default_factory=list)
    rebaselines: List[IdentityMapping] = field(default_factory=list)
    checked: int = 0
    unchanged: int = 0

    @property
    def total(self) -> int:
        return len(self.creates) + len(self.updates) + len(self.deletes)

    def is_empty(self) -> bool:
        return self.total == 0


def _index(items: Iterable[TaskItem], side: str) -> Dict[str, TaskItem]:
    indexed: Dict[str, TaskItem] = {}
    for item in items:
        if item.id in indexed:
            LOGGER.warning("Duplicate %s task id %s, keeping the last one", side, item.id)
        indexed[item.id] = item
    return indexed


def compute_plan(
    source_items: Iterable[TaskItem],
    target_items: Iterable[TaskItem],
    mappings: Iterable[IdentityMapping],
    fields: FrozenSet[str],
    sync_filter: Optional[SyncFilter] = None,
) -> SyncPlan:
    """Splits the source snapshot into create, update and delete actions."""
    sources = _index(source_items, "source")
    targets = _index(target_items, "target")
    by_source = {mapping.source_id: mapping for mapping in mappings}
    plan = SyncPlan()

    for source in sources.values():
        if sync_filter is not None and not sync_filter.matches(source):
            continue
        plan.checked += 1
        source_fp = fingerprint(source, fields)
        mapping = by_source.get(source.id)
        if mapping is None:
            plan.creates.append(CreateAction(source, source_fp))
            continue
        target = targets.get(mapping.target_id)
        if target is None:
            LOGGER.debug(
                "Target %s of %s is gone, recreating", mapping.target_id, source.id
            )
            plan.creates.append(CreateAction(source, source_fp, stale_mapping=mapping))
            continue
        target_fp = fingerprint(target, fields)
        fields_changed = not mapping.fingerprinted_with(fields)
        if fields_changed and source_fp == target_fp:
            plan.unchanged += 1
            plan.rebaselines.append(
                IdentityMapping(mapping.source_id, mapping.target_id, source_fp, fields=fields)
            )
            continue
        if not fields_changed and source_fp == mapping.synced_source_fingerprint:
            plan.unchanged += 1
            continue
        plan.updates.append(
            UpdateAction(
                source=source,
                target=target,
                mapping=mapping,
                source_fingerprint=source_fp,
                target_fingerprint=target_fp,
                fields_changed=fields_changed,
            )
        )

    for source_id, mapping in by_source.items():
        if source_id in sources:
            continue
        plan.checked += 1
        plan.deletes.append(DeleteAction(mapping, target_exists=mapping.target_id in targets))

    LOGGER.debug(
        "Plan: %d create, %d update, %d delete, %d unchanged",
        len(plan.creates),
        len(plan.updates),
        len(plan.deletes),
        plan.unchanged,
    )
    return plan


__all__ = ["SyncFilter", "CreateAction", "UpdateAction", "DeleteAction", "SyncPlan", "compute_plan"]
