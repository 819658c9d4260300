"""Content fingerprints used for change and conflict detection."""
from __future__ import annotations

import hashlib
import json
from typing import Dict, FrozenSet, Tuple

from minion_sync.models import TaskItem

CORE_FIELDS: Tuple[str, ...] = ("name", "completed", "due_on", "notes")
TAGS_FIELD = "tags"
SECTION_FIELD = "section"


def synced_fields(*, sync_tags: bool, sync_sections: bool) -> FrozenSet[str]:
    """Returns the attribute names that take part in a sync pass."""
    fields = set(CORE_FIELDS)
    if sync_tags:
        fields.add(TAGS_FIELD)
    if sync_sections:
        fields.add(SECTION_FIELD)
    return frozenset(fields)


def normalize(item: TaskItem, fields: FrozenSet[str]) -> Dict[str, object]:
    # Absent values collapse to the same representation on every backend.
    normalized: Dict[str, object] = {
        "name": item.name or "",
        "completed": bool(item.completed),
        "due_on": item.due_on.isoformat() if item.due_on else None,
        "notes": item.notes or "",
    }
    if TAGS_FIELD in fields:
        normalized["tags"] = sorted(set(item.tags or ()))
    if SECTION_FIELD in fields:
        normalized["section"] = item.section or ""
    return {key: value for key, value in normalized.items() if key in fields}


def fingerprint(item: TaskItem, fields: FrozenSet[str]) -> str:
    """SHA-256 over the canonical JSON of the synced attributes of ``item``."""
    canonical = json.dumps(
        normalize(item, fields), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


__all__ = ["CORE_FIELDS", "TAGS_FIELD", "SECTION_FIELD", "synced_fields", "normalize", "fingerprint"]
