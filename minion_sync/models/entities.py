"""Domain entities shared by the backends and the sync engine."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, FrozenSet, Iterable, List, Optional


@dataclass(frozen=True, slots=True)
class TaskItem:
    """A task as seen by one backend.

    ``id`` is scoped to the backend the item was read from. ``tags`` holds tag
    names, ``section`` the name of the section the task belongs to.
    """

    id: str
    name: str
    completed: bool = False
    due_on: Optional[date] = None
    notes: Optional[str] = None
    tags: FrozenSet[str] = field(default_factory=frozenset)
    section: Optional[str] = None

    def with_id(self, task_id: str) -> "TaskItem":
        return replace(self, id=task_id)

    @classmethod
    def build(
        cls,
        task_id: str,
        name: str,
        *,
        completed: bool = False,
        due_on: Optional[date] = None,
        notes: Optional[str] = None,
        tags: Iterable[str] = (),
        section: Optional[str] = None,
    ) -> "TaskItem":
        return cls(
            id=task_id,
            name=name,
            completed=completed,
            due_on=due_on,
            notes=notes,
            tags=frozenset(tags),
            section=section,
        )


@dataclass(slots=True)
class Tag:
    """Tag of a task store."""

    id: str
    name: str


@dataclass(slots=True)
class Section:
    """Section (column, list) of a task store."""

    id: str
    name: str


@dataclass(slots=True)
class IdentityMapping:
    """Correspondence between a source task and its copy in the target.

    ``last_fingerprint`` is the fingerprint the target item is expected to have
    since the engine last wrote it. ``source_fingerprint`` is only set when the
    source fingerprint recorded at that time differs from it, which happens
    after a conflict was resolved in favour of the target.

    ``fields`` names the attributes both fingerprints were computed over.
    Fingerprints taken over another field set are not comparable.
    """

    source_id: str
    target_id: str
    last_fingerprint: str
    source_fingerprint: Optional[str] = None
    fields: Optional[FrozenSet[str]] = None

    @property
    def synced_source_fingerprint(self) -> str:
        return self.source_fingerprint or self.last_fingerprint

    def fingerprinted_with(self, fields: FrozenSet[str]) -> bool:
        # Records without a field set predate it and are taken as current.
        return self.fields is None or self.fields == fields

    def to_record(self) -> Dict[str, object]:
        record: Dict[str, object] = {
            "sourceId": self.source_id,
            "targetId": self.target_id,
            "lastFingerprint": self.last_fingerprint,
        }
        if self.source_fingerprint and self.source_fingerprint != self.last_fingerprint:
            record["sourceFingerprint"] = self.source_fingerprint
        if self.fields is not None:
            record["syncedFields"] = sorted(self.fields)
        return record

    @classmethod
    def from_record(cls, record: Dict) -> "IdentityMapping":
        fields: Optional[List[str]] = record.get("syncedFields")
        if fields is not None and not isinstance(fields, list):
            raise TypeError(f"syncedFields must be a list, got {type(fields).__name__}")
        return cls(
            source_id=str(record["sourceId"]),
            target_id=str(record["targetId"]),
            last_fingerprint=str(record["lastFingerprint"]),
            source_fingerprint=record.get("sourceFingerprint"),
            fields=frozenset(str(name) for name in fields) if fields is not None else None,
        )


__all__ = ["TaskItem", "Tag", "Section", "IdentityMapping"]
