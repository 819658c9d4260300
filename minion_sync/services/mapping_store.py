"""Persistent identity mappings for one source/target pair."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List

from minion_sync.errors import StateCorruptionError
from minion_sync.fileio import atomic_write_text
from minion_sync.models import IdentityMapping

LOGGER = logging.getLogger(__name__)


def state_file_name(source_name: str, target_name: str) -> str:
    return f"{source_name}__{target_name}.json"


class IdentityMapStore:
    """JSON file holding ``{sourceId, targetId, lastFingerprint}`` records.

    Mutations only touch the in-memory set; ``save()`` writes the whole set
    atomically.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._mappings: Dict[str, IdentityMapping] = {}

    @classmethod
    def for_pair(cls, state_dir: Path | str, source_name: str, target_name: str) -> "IdentityMapStore":
        return cls(Path(state_dir) / state_file_name(source_name, target_name))

    @property
    def path(self) -> Path:
        return self._path

    # region persistence
    def load(self) -> List[IdentityMapping]:
        """Reads the state file; a missing file is an empty mapping set."""
        self._mappings = {}
        if not self._path.exists():
            LOGGER.info("State file %s not found, starting with no mappings", self._path)
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StateCorruptionError(f"Cannot parse state file {self._path}: {exc}") from exc
        if not isinstance(raw, list):
            raise StateCorruptionError(f"State file {self._path} must contain a JSON array")

        mappings: Dict[str, IdentityMapping] = {}
        target_ids: Dict[str, str] = {}
        for index, record in enumerate(raw):
            try:
                mapping = IdentityMapping.from_record(record)
            except (KeyError, TypeError, AttributeError) as exc:
                raise StateCorruptionError(
                    f"Invalid mapping record #{index} in {self._path}: {record!r}"
                ) from exc
            if mapping.source_id in mappings:
                raise StateCorruptionError(
                    f"Duplicate source id {mapping.source_id} in {self._path}"
                )
            if mapping.target_id in target_ids:
                raise StateCorruptionError(
                    f"Target id {mapping.target_id} is mapped from both "
                    f"{target_ids[mapping.target_id]} and {mapping.source_id}"
                )
            mappings[mapping.source_id] = mapping
            target_ids[mapping.target_id] = mapping.source_id
        self._mappings = mappings
        LOGGER.debug("Loaded %d mappings from %s", len(mappings), self._path)
        return list(mappings.values())

    def save(self) -> None:
        records = [mapping.to_record() for mapping in self._mappings.values()]
        atomic_write_text(self._path, json.dumps(records, indent=2, ensure_ascii=False) + "\n")
        LOGGER.debug("Saved %d mappings to %s", len(records), self._path)

    # endregion

    # region mappings
    def all(self) -> List[IdentityMapping]:
        return list(self._mappings.values())

    def upsert(self, mapping: IdentityMapping) -> None:
        # A target item belongs to exactly one source item.
        for source_id, existing in list(self._mappings.items()):
            if existing.target_id == mapping.target_id and source_id != mapping.source_id:
                LOGGER.warning(
                    "Target %s re-mapped from %s to %s",
                    mapping.target_id,
                    source_id,
                    mapping.source_id,
                )
                del self._mappings[source_id]
        self._mappings[mapping.source_id] = mapping

    def remove(self, source_id: str) -> None:
        self._mappings.pop(source_id, None)

    # endregion

    def __len__(self) -> int:
        return len(self._mappings)


__all__ = ["IdentityMapStore", "state_file_name"]
