"""One-way synchronization of tasks from a source backend to a target backend."""
from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, List, Optional, Set, Tuple, Union

from minion_sync.clients.base import TaskBackend
from minion_sync.errors import (
    BackendError,
    ConfigurationError,
    SnapshotFetchError,
    SyncDeadlineExceeded,
)
from minion_sync.models import (
    IdentityMapping,
    SyncError,
    SyncPhase,
    SyncResult,
    SyncStats,
    TaskItem,
    utc_now,
)
from minion_sync.services.conflict import ConflictDecision, ConflictResolver, ConflictStrategy
from minion_sync.services.differ import (
    CreateAction,
    DeleteAction,
    SyncFilter,
    SyncPlan,
    UpdateAction,
    compute_plan,
)
from minion_sync.services.fingerprint import synced_fields
from minion_sync.services.mapping_store import IdentityMapStore

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]
ErrorCallback = Callable[[SyncError], None]
Action = Union[CreateAction, UpdateAction, DeleteAction]


class SyncDirection(str, Enum):
    ONE_WAY = "one-way"
    TWO_WAY = "two-way"
    N_WAY = "n-way"


SUPPORTED_DIRECTIONS = (SyncDirection.ONE_WAY,)


@dataclass
class SyncCallbacks:
    on_progress: Optional[ProgressCallback] = None
    on_error: Optional[ErrorCallback] = None


@dataclass
class SyncConfiguration:
    """Options of one sync pass."""

    direction: SyncDirection = SyncDirection.ONE_WAY
    conflict_strategy: ConflictStrategy = ConflictStrategy.SOURCE_WINS
    dry_run: bool = False
    sync_tags: bool = True
    sync_sections: bool = True
    filter: Optional[SyncFilter] = None
    time_budget: Optional[float] = None
    callbacks: SyncCallbacks = field(default_factory=SyncCallbacks)

    @property
    def fields(self) -> FrozenSet[str]:
        return synced_fields(sync_tags=self.sync_tags, sync_sections=self.sync_sections)


@dataclass
class _WorkList:
    actions: List[Action] = field(default_factory=list)
    accepted: List[IdentityMapping] = field(default_factory=list)


@dataclass
class _Applied:
    upserts: List[IdentityMapping] = field(default_factory=list)
    removals: List[str] = field(default_factory=list)


def classify_error(exc: BaseException) -> str:
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return "network"
    message = str(exc).lower()
    if "network" in message or "connection" in message or "timed out" in message:
        return "network"
    if isinstance(exc, (ValueError, TypeError)) or "invalid" in message:
        return "validation"
    if isinstance(exc, BackendError) or "api" in message:
        return "backend"
    return "unknown"


class SyncEngine:
    """Drives a single pass: load state, snapshot, diff, apply, persist."""

    def __init__(
        self,
        source: TaskBackend,
        target: TaskBackend,
        store: IdentityMapStore,
        config: SyncConfiguration,
        *,
        source_name: str = "source",
        target_name: str = "target",
    ) -> None:
        self._source = source
        self._target = target
        self._store = store
        self._config = config
        self._source_name = source_name
        self._target_name = target_name
        self._phase = SyncPhase.INIT
        self._stats = SyncStats()
        self._errors: List[SyncError] = []
        self._deadline: Optional[float] = None
        self._direction = SyncDirection.ONE_WAY
        self._strategy = ConflictStrategy.SOURCE_WINS

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    # region public API
    def sync(self) -> SyncResult:
        """Runs one pass and returns its result.

        Fatal problems (bad configuration, corrupt state, unreachable backend,
        exhausted time budget) are raised; per-item failures end up in
        ``SyncResult.errors``.
        """
        started_at = utc_now()
        started = time.monotonic()
        self._stats = SyncStats()
        self._errors = []
        self._phase = SyncPhase.INIT
        try:
            self._validate()
            self._deadline = None
            if self._config.time_budget is not None:
                self._deadline = started + self._config.time_budget

            self._enter(SyncPhase.LOADING_STATE)
            mappings = self._store.load()

            self._enter(SyncPhase.FETCHING_SNAPSHOTS)
            source_items, target_items = self._fetch_snapshots()

            self._enter(SyncPhase.DIFFING)
            plan = compute_plan(
                source_items,
                target_items,
                mappings,
                self._config.fields,
                self._config.filter,
            )
            self._stats.items_checked = plan.checked
            if plan.is_empty():
                LOGGER.info("Nothing to apply, %d tasks unchanged", plan.unchanged)
            work = self._evaluate(plan)

            self._enter(SyncPhase.APPLYING)
            applied, timed_out = self._apply(work)

            self._enter(SyncPhase.PERSISTING_STATE)
            self._persist(applied, work.accepted)
            if timed_out:
                raise SyncDeadlineExceeded(
                    f"Time budget of {self._config.time_budget}s exceeded; "
                    f"{len(applied.upserts) + len(applied.removals)} actions were persisted"
                )
        except Exception:
            self._phase = SyncPhase.ERROR
            LOGGER.error("Sync %s -> %s aborted", self._source_name, self._target_name)
            raise

        self._enter(SyncPhase.DONE)
        completed_at = utc_now()
        return SyncResult(
            success=not self._errors,
            stats=self._stats,
            errors=list(self._errors),
            duration_ms=int((time.monotonic() - started) * 1000),
            direction=self._direction.value,
            backends=[self._source_name, self._target_name],
            dry_run=self._config.dry_run,
            started_at=started_at,
            completed_at=completed_at,
        )

    # endregion

    # region phases
    def _validate(self) -> None:
        try:
            direction = SyncDirection(self._config.direction)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown sync direction: {self._config.direction!r}") from exc
        if direction not in SUPPORTED_DIRECTIONS:
            raise ConfigurationError(f"Sync direction {direction.value!r} is not supported")
        try:
            strategy = ConflictStrategy(self._config.conflict_strategy)
        except ValueError as exc:
            raise ConfigurationError(
                f"Unknown conflict strategy: {self._config.conflict_strategy!r}"
            ) from exc
        budget = self._config.time_budget
        if budget is not None and budget <= 0:
            raise ConfigurationError("time_budget must be positive")
        self._direction = direction
        self._strategy = strategy

    def _fetch_snapshots(self) -> Tuple[List[TaskItem], List[TaskItem]]:
        self._progress(SyncPhase.FETCHING_SNAPSHOTS, 0, 2)
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="snapshot") as pool:
            source_future = pool.submit(self._source.list_tasks)
            target_future = pool.submit(self._target.list_tasks)
            source_items = self._snapshot_result(source_future, self._source_name)
            target_items = self._snapshot_result(target_future, self._target_name)
        LOGGER.info(
            "Fetched %d source and %d target tasks", len(source_items), len(target_items)
        )
        self._progress(SyncPhase.FETCHING_SNAPSHOTS, 2, 2)
        return source_items, target_items

    @staticmethod
    def _snapshot_result(future: Future, backend_name: str) -> List[TaskItem]:
        try:
            return list(future.result())
        except Exception as exc:
            raise SnapshotFetchError(backend_name, exc) from exc

    def _evaluate(self, plan: SyncPlan) -> _WorkList:
        work = _WorkList(accepted=list(plan.rebaselines))
        resolver = ConflictResolver(self._strategy)
        total = plan.total
        processed = 0
        self._progress(SyncPhase.DIFFING, processed, total)

        for create in plan.creates:
            work.actions.append(create)
            processed += 1
            self._progress(SyncPhase.DIFFING, processed, total)

        for update in plan.updates:
            processed += 1
            if not update.target_modified:
                work.actions.append(update)
                self._progress(SyncPhase.DIFFING, processed, total)
                continue
            self._stats.conflicts_detected += 1
            decision = resolver.resolve(update)
            if decision is ConflictDecision.APPLY_SOURCE:
                self._stats.conflicts_resolved += 1
                work.actions.append(update)
            elif decision is ConflictDecision.KEEP_TARGET:
                self._stats.conflicts_resolved += 1
                self._stats.items_skipped += 1
                work.accepted.append(
                    resolver.accepted_target_mapping(update, fields=self._config.fields)
                )
            else:
                self._stats.items_skipped += 1
                self._report_error(update.item_id, "conflict", resolver.describe(update), kind="conflict")
            self._progress(SyncPhase.DIFFING, processed, total)

        for delete in plan.deletes:
            work.actions.append(delete)
            processed += 1
            self._progress(SyncPhase.DIFFING, processed, total)
        return work

    def _apply(self, work: _WorkList) -> Tuple[_Applied, bool]:
        applied = _Applied()
        total = len(work.actions)
        self._progress(SyncPhase.APPLYING, 0, total)
        if not self._config.dry_run:
            self._ensure_related_data(work.actions)

        for index, action in enumerate(work.actions, start=1):
            if self._deadline_passed():
                LOGGER.warning("Time budget exhausted after %d of %d actions", index - 1, total)
                return applied, True
            if self._config.dry_run:
                self._count_dry_run(action)
            else:
                self._apply_action(action, applied)
            self._progress(SyncPhase.APPLYING, index, total)
        return applied, False

    def _persist(self, applied: _Applied, accepted: List[IdentityMapping]) -> None:
        if self._config.dry_run:
            LOGGER.info("[DRY-RUN] identity mappings left untouched")
            return
        self._progress(SyncPhase.PERSISTING_STATE, 0, 1)
        for mapping in applied.upserts:
            self._store.upsert(mapping)
        for mapping in accepted:
            self._store.upsert(mapping)
        for source_id in applied.removals:
            self._store.remove(source_id)
        self._store.save()
        self._progress(SyncPhase.PERSISTING_STATE, 1, 1)

    # endregion

    # region actions
    def _apply_action(self, action: Action, applied: _Applied) -> None:
        fields = self._config.fields
        try:
            if isinstance(action, CreateAction):
                if action.stale_mapping is not None:
                    LOGGER.info(
                        "Target %s of %s is gone, creating a new copy",
                        action.stale_mapping.target_id,
                        action.source.id,
                    )
                LOGGER.debug("Creating %s in %s", action.source.id, self._target_name)
                created = self._target.create_task(action.source, fields=fields)
                applied.upserts.append(
                    IdentityMapping(action.source.id, created.id, action.fingerprint, fields=fields)
                )
                self._stats.items_created += 1
            elif isinstance(action, UpdateAction):
                LOGGER.debug("Updating %s -> %s", action.source.id, action.target.id)
                self._target.update_task(action.target.id, action.source, fields=fields)
                applied.upserts.append(
                    IdentityMapping(
                        action.mapping.source_id,
                        action.mapping.target_id,
                        action.source_fingerprint,
                        fields=fields,
                    )
                )
                self._stats.items_updated += 1
            else:
                if action.target_exists:
                    LOGGER.debug("Deleting %s (source %s)", action.mapping.target_id, action.item_id)
                    self._target.delete_task(action.mapping.target_id)
                else:
                    LOGGER.debug("Target %s already gone, dropping mapping", action.mapping.target_id)
                applied.removals.append(action.mapping.source_id)
                self._stats.items_deleted += 1
        except Exception as exc:
            self._stats.items_skipped += 1
            self._report_error(action.item_id, _action_phase(action), str(exc), kind=classify_error(exc))

    def _count_dry_run(self, action: Action) -> None:
        if isinstance(action, CreateAction):
            LOGGER.info("[DRY-RUN] create %s (%s)", action.source.id, action.source.name)
            self._stats.items_created += 1
        elif isinstance(action, UpdateAction):
            LOGGER.info("[DRY-RUN] update %s -> %s", action.source.id, action.target.id)
            self._stats.items_updated += 1
        else:
            LOGGER.info("[DRY-RUN] delete %s", action.mapping.target_id)
            self._stats.items_deleted += 1

    def _ensure_related_data(self, actions: List[Action]) -> None:
        wanted_tags: Set[str] = set()
        wanted_sections: Set[str] = set()
        for action in actions:
            if isinstance(action, (CreateAction, UpdateAction)):
                wanted_tags.update(action.source.tags)
                if action.source.section:
                    wanted_sections.add(action.source.section)

        if self._config.sync_tags and wanted_tags:
            try:
                existing = {tag.name for tag in self._target.list_tags()}
                for name in sorted(wanted_tags - existing):
                    LOGGER.debug("Creating tag %r in %s", name, self._target_name)
                    self._target.create_tag(name)
            except Exception as exc:
                self._report_error(None, "related-data", f"Failed to sync tags: {exc}", kind=classify_error(exc))

        if self._config.sync_sections and wanted_sections:
            try:
                existing = {section.name for section in self._target.list_sections()}
                for name in sorted(wanted_sections - existing):
                    LOGGER.debug("Creating section %r in %s", name, self._target_name)
                    self._target.create_section(name)
            except Exception as exc:
                self._report_error(
                    None, "related-data", f"Failed to sync sections: {exc}", kind=classify_error(exc)
                )

    # endregion

    # region helpers
    def _enter(self, phase: SyncPhase) -> None:
        self._phase = phase
        LOGGER.info("Sync %s -> %s: %s", self._source_name, self._target_name, phase.value)
        if phase is SyncPhase.LOADING_STATE:
            self._progress(phase, 0, 0)

    def _progress(self, phase: SyncPhase, processed: int, total: int) -> None:
        callback = self._config.callbacks.on_progress
        if callback is not None:
            callback(phase.value, processed, total)

    def _report_error(self, item_id: Optional[str], phase: str, message: str, *, kind: str) -> None:
        error = SyncError(item_id=item_id, phase=phase, message=message, kind=kind)
        self._errors.append(error)
        LOGGER.warning("[%s] %s: %s", phase, item_id or "-", message)
        callback = self._config.callbacks.on_error
        if callback is not None:
            callback(error)

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    # endregion


def _action_phase(action: Action) -> str:
    if isinstance(action, CreateAction):
        return "create"
    if isinstance(action, UpdateAction):
        return "update"
    return "delete"


__all__ = [
    "SyncDirection",
    "SyncCallbacks",
    "SyncConfiguration",
    "SyncEngine",
    "classify_error",
    "ProgressCallback",
    "ErrorCallback",
]
