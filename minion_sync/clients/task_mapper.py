"""Conversion between Asana API payloads and ``TaskItem``."""
from __future__ import annotations

from datetime import date
from typing import Collection, Dict, Optional

from dateutil import parser

from minion_sync.models import TaskItem

TASK_OPT_FIELDS = (
    "name",
    "completed",
    "due_on",
    "notes",
    "tags.name",
    "memberships.project.gid",
    "memberships.section.name",
)


class TaskMapper:
    """Maps Asana task payloads to tasks of one project and back."""

    def __init__(self, project_id: Optional[str] = None) -> None:
        self._project_id = project_id

    @staticmethod
    def _parse_date(value: Optional[str]) -> Optional[date]:
        if not value:
            return None
        return parser.isoparse(value).date()

    def _section_name(self, memberships) -> Optional[str]:
        fallback = None
        for membership in memberships or ():
            section = membership.get("section") or {}
            name = section.get("name")
            if not name:
                continue
            project = membership.get("project") or {}
            if self._project_id is None or project.get("gid") == self._project_id:
                return name
            fallback = fallback or name
        return fallback

    def map_task(self, payload: Dict, default_section: Optional[str] = None) -> TaskItem:
        """Builds a ``TaskItem``; membership in ``default_section`` reads as no section."""
        fields = payload.get("data") if "data" in payload else payload
        task_id = str(fields.get("gid") or fields.get("id"))
        tags = [tag.get("name") for tag in fields.get("tags") or () if tag.get("name")]
        section = self._section_name(fields.get("memberships"))
        if section is not None and section == default_section:
            section = None
        return TaskItem.build(
            task_id,
            fields.get("name") or "",
            completed=bool(fields.get("completed")),
            due_on=self._parse_date(fields.get("due_on")),
            notes=fields.get("notes") or None,
            tags=tags,
            section=section,
        )

    @staticmethod
    def to_asana_payload(item: TaskItem, fields: Collection[str]) -> Dict[str, object]:
        payload: Dict[str, object] = {}
        if "name" in fields:
            payload["name"] = item.name
        if "completed" in fields:
            payload["completed"] = item.completed
        if "due_on" in fields:
            payload["due_on"] = item.due_on.isoformat() if item.due_on else None
        if "notes" in fields:
            payload["notes"] = item.notes or ""
        return payload


__all__ = ["TaskMapper", "TASK_OPT_FIELDS"]
