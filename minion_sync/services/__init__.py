"""Service layer of the application."""

from .conflict import ConflictDecision, ConflictResolver, ConflictStrategy
from .differ import SyncFilter, SyncPlan, compute_plan
from .fingerprint import fingerprint, synced_fields
from .mapping_store import IdentityMapStore
from .sync import SyncCallbacks, SyncConfiguration, SyncDirection, SyncEngine

__all__ = [
    "SyncEngine",
    "SyncConfiguration",
    "SyncCallbacks",
    "SyncDirection",
    "IdentityMapStore",
    "ConflictStrategy",
    "ConflictResolver",
    "ConflictDecision",
    "SyncFilter",
    "SyncPlan",
    "compute_plan",
    "fingerprint",
    "synced_fields",
]
