"""Task backends the sync engine can talk to."""

from .base import BackendError, TaskBackend
from .local import LocalStoreError, LocalTaskStore

__all__ = ["TaskBackend", "BackendError", "LocalTaskStore", "LocalStoreError"]
