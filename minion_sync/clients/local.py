"""Task store kept in a local JSON file."""
from __future__ import annotations

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Collection, Dict, List

from dateutil import parser

from minion_sync.errors import BackendError
from minion_sync.fileio import atomic_write_text
from minion_sync.models import Section, Tag, TaskItem

LOGGER = logging.getLogger(__name__)


class LocalStoreError(BackendError):
    """Error of the local JSON task store."""


def _new_id() -> str:
    return uuid.uuid4().hex


class LocalTaskStore:
    """JSON file with ``tasks``, ``tags`` and ``sections`` arrays.

    Every public mutation is written back to disk atomically.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    # region low-level helpers
    def _read(self) -> Dict[str, List[Dict]]:
        if not self._path.exists():
            return {"tasks": [], "tags": [], "sections": []}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise LocalStoreError(f"Cannot read task store {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise LocalStoreError(f"Task store {self._path} must contain a JSON object")
        for key in ("tasks", "tags", "sections"):
            data.setdefault(key, [])
        return data

    def _write(self, data: Dict[str, List[Dict]]) -> None:
        try:
            atomic_write_text(self._path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
        except OSError as exc:
            raise LocalStoreError(f"Cannot write task store {self._path}: {exc}") from exc

    @staticmethod
    def _find_task(data: Dict[str, List[Dict]], task_id: str) -> Dict:
        for record in data["tasks"]:
            if record["id"] == task_id:
                return record
        raise LocalStoreError(f"Task {task_id} not found")

    @staticmethod
    def _has_named(records: List[Dict], name: str) -> bool:
        return any(record["name"] == name for record in records)

    @staticmethod
    def _to_item(record: Dict) -> TaskItem:
        due_on = record.get("dueOn")
        return TaskItem.build(
            str(record["id"]),
            record.get("name") or "",
            completed=bool(record.get("completed", False)),
            due_on=parser.isoparse(due_on).date() if due_on else None,
            notes=record.get("notes"),
            tags=record.get("tags") or (),
            section=record.get("section"),
        )

    @staticmethod
    def _write_fields(record: Dict, item: TaskItem, fields: Collection[str]) -> None:
        if "name" in fields:
            record["name"] = item.name
        if "completed" in fields:
            record["completed"] = item.completed
        if "due_on" in fields:
            record["dueOn"] = item.due_on.isoformat() if item.due_on else None
        if "notes" in fields:
            record["notes"] = item.notes

    def _reconcile_memberships(
        self, data: Dict[str, List[Dict]], task_id: str, item: TaskItem, fields: Collection[str]
    ) -> None:
        record = self._find_task(data, task_id)
        if "tags" in fields:
            current = set(record.get("tags") or ())
            for name in sorted(item.tags - current):
                self._add_tag(data, task_id, name)
            for name in sorted(current - item.tags):
                self._remove_tag(data, task_id, name)
        if "section" in fields and item.section != record.get("section"):
            if item.section:
                self._move_to_section(data, task_id, item.section)
            else:
                record["section"] = None

    def _add_tag(self, data: Dict[str, List[Dict]], task_id: str, tag_name: str) -> None:
        if not self._has_named(data["tags"], tag_name):
            raise LocalStoreError(f"Tag {tag_name!r} does not exist")
        record = self._find_task(data, task_id)
        tags = record.setdefault("tags", [])
        if tag_name not in tags:
            tags.append(tag_name)

    def _remove_tag(self, data: Dict[str, List[Dict]], task_id: str, tag_name: str) -> None:
        record = self._find_task(data, task_id)
        record["tags"] = [name for name in record.get("tags") or () if name != tag_name]

    def _move_to_section(self, data: Dict[str, List[Dict]], task_id: str, section_name: str) -> None:
        if not self._has_named(data["sections"], section_name):
            raise LocalStoreError(f"Section {section_name!r} does not exist")
        self._find_task(data, task_id)["section"] = section_name

    # endregion

    # region tasks
    def list_tasks(self) -> List[TaskItem]:
        with self._lock:
            data = self._read()
        return [self._to_item(record) for record in data["tasks"]]

    def create_task(self, item: TaskItem, *, fields: Collection[str]) -> TaskItem:
        with self._lock:
            data = self._read()
            record: Dict = {
                "id": _new_id(),
                "name": item.name,
                "completed": False,
                "dueOn": None,
                "notes": None,
                "tags": [],
                "section": None,
            }
            self._write_fields(record, item, fields)
            data["tasks"].append(record)
            self._reconcile_memberships(data, record["id"], item, fields)
            self._write(data)
        LOGGER.debug("Created local task %s", record["id"])
        return self._to_item(record)

    def update_task(self, task_id: str, item: TaskItem, *, fields: Collection[str]) -> TaskItem:
        with self._lock:
            data = self._read()
            record = self._find_task(data, task_id)
            self._write_fields(record, item, fields)
            self._reconcile_memberships(data, task_id, item, fields)
            self._write(data)
        return self._to_item(record)

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            data = self._read()
            self._find_task(data, task_id)
            data["tasks"] = [record for record in data["tasks"] if record["id"] != task_id]
            self._write(data)

    # endregion

    # region tags
    def list_tags(self) -> List[Tag]:
        with self._lock:
            data = self._read()
        return [Tag(id=str(record["id"]), name=record["name"]) for record in data["tags"]]

    def create_tag(self, name: str) -> Tag:
        with self._lock:
            data = self._read()
            for record in data["tags"]:
                if record["name"] == name:
                    return Tag(id=str(record["id"]), name=name)
            record = {"id": _new_id(), "name": name}
            data["tags"].append(record)
            self._write(data)
        return Tag(id=record["id"], name=name)

    def add_tag_to_task(self, task_id: str, tag_name: str) -> None:
        with self._lock:
            data = self._read()
            self._add_tag(data, task_id, tag_name)
            self._write(data)

    def remove_tag_from_task(self, task_id: str, tag_name: str) -> None:
        with self._lock:
            data = self._read()
            self._remove_tag(data, task_id, tag_name)
            self._write(data)

    # endregion

    # region sections
    def list_sections(self) -> List[Section]:
        with self._lock:
            data = self._read()
        return [Section(id=str(record["id"]), name=record["name"]) for record in data["sections"]]

    def create_section(self, name: str) -> Section:
        with self._lock:
            data = self._read()
            for record in data["sections"]:
                if record["name"] == name:
                    return Section(id=str(record["id"]), name=name)
            record = {"id": _new_id(), "name": name}
            data["sections"].append(record)
            self._write(data)
        return Section(id=record["id"], name=name)

    def move_task_to_section(self, task_id: str, section_name: str) -> None:
        with self._lock:
            data = self._read()
            self._move_to_section(data, task_id, section_name)
            self._write(data)

    # endregion


__all__ = ["LocalTaskStore", "LocalStoreError"]
