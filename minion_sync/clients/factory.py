"""Builds task backends from their configuration."""
from __future__ import annotations

from minion_sync.clients.asana import AsanaClient
from minion_sync.clients.base import TaskBackend
from minion_sync.clients.local import LocalTaskStore
from minion_sync.config import BackendSettings
from minion_sync.errors import ConfigurationError


def build_backend(name: str, settings: BackendSettings) -> TaskBackend:
    if settings.type == "local" and settings.local is not None:
        return LocalTaskStore(settings.local.path)
    if settings.type == "asana" and settings.asana is not None:
        return AsanaClient(settings.asana)
    raise ConfigurationError(f"Unsupported backend type for '{name}': {settings.type}")


__all__ = ["build_backend"]
