"""Capability surface every task backend offers to the sync engine."""
from __future__ import annotations

from typing import Collection, List, Protocol, runtime_checkable

from minion_sync.errors import BackendError
from minion_sync.models import Section, Tag, TaskItem


@runtime_checkable
class TaskBackend(Protocol):
    """Uniform access to one task store.

    ``list_tasks`` must fill every attribute that takes part in fingerprints
    (name, completion, due date, notes, tags, section); an under-fetched field
    makes every mapped item look modified on the target side.

    ``fields`` names the attributes a write may touch. Tags and section are
    reconciled through the membership operations of the store.
    Failures are raised as ``BackendError``.
    """

    def list_tasks(self) -> List[TaskItem]: ...

    def list_tags(self) -> List[Tag]: ...

    def create_tag(self, name: str) -> Tag: ...

    def list_sections(self) -> List[Section]: ...

    def create_section(self, name: str) -> Section: ...

    def create_task(self, item: TaskItem, *, fields: Collection[str]) -> TaskItem: ...

    def update_task(self, task_id: str, item: TaskItem, *, fields: Collection[str]) -> TaskItem: ...

    def delete_task(self, task_id: str) -> None: ...

    def add_tag_to_task(self, task_id: str, tag_name: str) -> None: ...

    def remove_tag_from_task(self, task_id: str, tag_name: str) -> None: ...

    def move_task_to_section(self, task_id: str, section_name: str) -> None: ...


__all__ = ["TaskBackend", "BackendError"]
