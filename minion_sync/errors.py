"""Exceptions raised by minion-sync."""
from __future__ import annotations


class MinionSyncError(RuntimeError):
    """Base class for all minion-sync errors."""


class ConfigurationError(MinionSyncError):
    """Invalid application or sync configuration."""


class StateCorruptionError(MinionSyncError):
    """The persisted identity mappings cannot be parsed."""


class SnapshotFetchError(MinionSyncError):
    """A backend could not be listed, so no consistent snapshot pair exists."""

    def __init__(self, backend: str, cause: BaseException) -> None:
        super().__init__(f"Failed to fetch tasks from {backend}: {cause}")
        self.backend = backend
        self.cause = cause


class SyncDeadlineExceeded(MinionSyncError):
    """The time budget ran out between two actions."""


class BackendError(MinionSyncError):
    """Transport or API failure of a task backend."""


__all__ = [
    "MinionSyncError",
    "ConfigurationError",
    "StateCorruptionError",
    "SnapshotFetchError",
    "SyncDeadlineExceeded",
    "BackendError",
]
