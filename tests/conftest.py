"""Shared fixtures for the minion-sync tests."""
from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from minion_sync.models import TaskItem
from minion_sync.services.mapping_store import IdentityMapStore
from minion_sync.services.sync import SyncConfiguration, SyncEngine
from tests.fakes import FakeBackend


@pytest.fixture
def source() -> FakeBackend:
    return FakeBackend(
        [
            TaskItem.build("T1", "Write docs", tags=["doc"]),
            TaskItem.build("T2", "Ship v1"),
        ],
        prefix="s",
    )


@pytest.fixture
def target() -> FakeBackend:
    return FakeBackend(prefix="x")


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "source__target.json"


@pytest.fixture
def store(state_path: Path) -> IdentityMapStore:
    return IdentityMapStore(state_path)


@pytest.fixture
def make_engine(source, target, store) -> Callable[..., SyncEngine]:
    """Builds an engine over the shared fakes; keyword arguments configure the pass."""

    def factory(**options) -> SyncEngine:
        return SyncEngine(source, target, store, SyncConfiguration(**options))

    return factory
