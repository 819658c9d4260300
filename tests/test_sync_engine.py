"""
Tests for the one-way sync engine.

Covers first sync, updates, deletes, idempotence, dry runs, per-item
failure isolation, fatal errors and progress reporting.
"""

from dataclasses import replace

import pytest

from minion_sync.errors import (
    BackendError,
    ConfigurationError,
    SnapshotFetchError,
    StateCorruptionError,
    SyncDeadlineExceeded,
)
from minion_sync.models import SyncPhase, TaskItem
from minion_sync.services.conflict import ConflictStrategy
from minion_sync.services.differ import SyncFilter
from minion_sync.services.fingerprint import fingerprint, synced_fields
from minion_sync.services.mapping_store import IdentityMapStore
from minion_sync.services.sync import (
    SyncCallbacks,
    SyncConfiguration,
    SyncDirection,
    SyncEngine,
    classify_error,
)


def _stats(result):
    stats = result.stats
    return {
        "itemsChecked": stats.items_checked,
        "itemsCreated": stats.items_created,
        "itemsUpdated": stats.items_updated,
        "itemsDeleted": stats.items_deleted,
        "itemsSkipped": stats.items_skipped,
    }


def _rename(backend, task_id, name):
    backend.tasks[task_id] = replace(backend.tasks[task_id], name=name)


class TestFirstAndSecondPass:
    def test_end_to_end_example(self, make_engine, source, target, state_path):
        first = make_engine().sync()

        assert first.success
        assert _stats(first) == {
            "itemsChecked": 2,
            "itemsCreated": 2,
            "itemsUpdated": 0,
            "itemsDeleted": 0,
            "itemsSkipped": 0,
        }
        assert len(IdentityMapStore(state_path).load()) == 2

        _rename(source, "T1", "Write docs v2")
        second = make_engine().sync()

        assert second.success
        assert _stats(second) == {
            "itemsChecked": 2,
            "itemsCreated": 0,
            "itemsUpdated": 1,
            "itemsDeleted": 0,
            "itemsSkipped": 0,
        }
        assert target.by_name("Write docs v2").tags == frozenset({"doc"})

    def test_created_item_is_mapped_with_current_fingerprint(self, make_engine, source, target, state_path):
        make_engine().sync()

        mappings = {m.source_id: m for m in IdentityMapStore(state_path).load()}
        fields = synced_fields(sync_tags=True, sync_sections=True)
        mapping = mappings["T1"]
        assert mapping.target_id in target.tasks
        assert target.tasks[mapping.target_id].name == "Write docs"
        assert mapping.last_fingerprint == fingerprint(source.tasks["T1"], fields)

    def test_second_run_without_changes_is_idempotent(self, make_engine, target):
        make_engine().sync()
        calls_before = len(target.mutating_calls)

        result = make_engine().sync()

        assert result.success
        assert result.errors == []
        assert result.stats.items_created == 0
        assert result.stats.items_updated == 0
        assert result.stats.items_deleted == 0
        assert len(target.mutating_calls) == calls_before

    def test_delete_propagates_and_drops_mapping(self, make_engine, source, target, state_path):
        make_engine().sync()
        copy_id = {m.source_id: m.target_id for m in IdentityMapStore(state_path).load()}["T2"]

        del source.tasks["T2"]
        result = make_engine().sync()

        assert result.stats.items_deleted == 1
        assert result.stats.items_checked == 2
        assert copy_id not in target.tasks
        assert {m.source_id for m in IdentityMapStore(state_path).load()} == {"T1"}

    def test_delete_of_already_missing_target_only_drops_mapping(self, make_engine, source, target, state_path):
        make_engine().sync()
        copy_id = {m.source_id: m.target_id for m in IdentityMapStore(state_path).load()}["T2"]
        del source.tasks["T2"]
        del target.tasks[copy_id]

        result = make_engine().sync()

        assert result.success
        assert result.stats.items_deleted == 1
        assert ("delete_task", copy_id) not in target.calls
        assert {m.source_id for m in IdentityMapStore(state_path).load()} == {"T1"}

    def test_stale_mapping_is_recreated(self, make_engine, target, state_path):
        make_engine().sync()
        old_id = {m.source_id: m.target_id for m in IdentityMapStore(state_path).load()}["T1"]
        del target.tasks[old_id]

        result = make_engine().sync()

        assert result.stats.items_created == 1
        assert result.stats.items_updated == 0
        new_id = {m.source_id: m.target_id for m in IdentityMapStore(state_path).load()}["T1"]
        assert new_id != old_id
        assert target.tasks[new_id].name == "Write docs"

    def test_change_in_excluded_field_does_not_update(self, make_engine, source):
        make_engine(sync_tags=False).sync()
        source.tasks["T1"] = replace(source.tasks["T1"], tags=frozenset({"doc", "urgent"}))

        result = make_engine(sync_tags=False).sync()

        assert result.stats.items_updated == 0
        assert result.stats.items_created == 0

    def test_excluded_tags_are_not_written(self, make_engine, target):
        make_engine(sync_tags=False).sync()

        assert target.by_name("Write docs").tags == frozenset()
        assert not target.tags


class TestDryRun:
    def test_dry_run_counts_without_side_effects(self, make_engine, target, state_path):
        result = make_engine(dry_run=True).sync()

        assert result.dry_run
        assert result.stats.items_created == 2
        assert target.mutating_calls == []
        assert not state_path.exists()

    def test_dry_run_never_saves_the_store(self, source, target, state_path):
        class CountingStore(IdentityMapStore):
            saves = 0

            def save(self):
                CountingStore.saves += 1
                super().save()

        store = CountingStore(state_path)
        SyncEngine(source, target, store, SyncConfiguration()).sync()
        assert CountingStore.saves == 1

        _rename(source, "T1", "Renamed")
        del source.tasks["T2"]
        result = SyncEngine(source, target, store, SyncConfiguration(dry_run=True)).sync()

        assert CountingStore.saves == 1
        assert result.stats.items_updated == 1
        assert result.stats.items_deleted == 1
        assert target.by_name("Write docs")


class TestPartialFailure:
    def test_failed_update_is_isolated(self, make_engine, source, target, state_path):
        source.tasks["B"] = TaskItem.build("B", "Item B")
        source.tasks["C"] = TaskItem.build("C", "Item C")
        make_engine().sync()
        before = {m.source_id: m for m in IdentityMapStore(state_path).load()}
        b_copy, c_copy = before["B"].target_id, before["C"].target_id

        source.tasks["A"] = TaskItem.build("A", "Item A")
        _rename(source, "B", "Item B changed")
        del source.tasks["C"]
        target.fail("update_task", b_copy)
        seen = []

        result = make_engine(callbacks=SyncCallbacks(on_error=seen.append)).sync()

        assert not result.success
        assert result.stats.items_created == 1
        assert result.stats.items_updated == 0
        assert result.stats.items_deleted == 1
        assert result.stats.items_skipped == 1
        assert len(result.errors) == 1
        assert result.errors[0].item_id == "B"
        assert result.errors[0].phase == "update"
        assert result.errors[0].kind == "backend"
        assert seen == result.errors

        after = {m.source_id: m for m in IdentityMapStore(state_path).load()}
        assert "A" in after
        assert "C" not in after
        assert after["B"] == before["B"]
        assert c_copy not in target.tasks
        assert target.by_name("Item A")

        order = [name for name, _ in target.mutating_calls if name.endswith("_task")][-3:]
        assert order == ["create_task", "update_task", "delete_task"]

    def test_failed_create_is_retried_next_run(self, make_engine, target, state_path):
        target.fail("create_task", "T2")

        first = make_engine().sync()

        assert first.stats.items_created == 1
        assert first.stats.items_skipped == 1
        assert first.errors[0].phase == "create"
        assert {m.source_id for m in IdentityMapStore(state_path).load()} == {"T1"}

        target.recover()
        second = make_engine().sync()
        assert second.success
        assert second.stats.items_created == 1

    def test_checked_covers_every_category(self, make_engine, source, target):
        make_engine().sync()
        _rename(source, "T1", "Changed")
        del source.tasks["T2"]
        source.tasks["T3"] = TaskItem.build("T3", "New")

        stats = make_engine().sync().stats

        assert stats.items_checked == 3
        assert stats.items_checked >= (
            stats.items_created + stats.items_updated + stats.items_deleted + stats.items_skipped
        )


class TestConflicts:
    @pytest.fixture
    def conflicting(self, make_engine, source, target, state_path):
        """Both copies of T1 changed after the first pass; returns the target id."""
        make_engine().sync()
        copy_id = {m.source_id: m.target_id for m in IdentityMapStore(state_path).load()}["T1"]
        _rename(source, "T1", "Write docs v2")
        _rename(target, copy_id, "Edited in target")
        return copy_id

    def test_source_wins_overwrites_target(self, make_engine, target, conflicting):
        result = make_engine(conflict_strategy=ConflictStrategy.SOURCE_WINS).sync()

        assert result.success
        assert result.stats.conflicts_detected == 1
        assert result.stats.conflicts_resolved == 1
        assert result.stats.items_updated == 1
        assert target.tasks[conflicting].name == "Write docs v2"

    def test_target_wins_keeps_target_and_settles(self, make_engine, source, target, conflicting):
        first = make_engine(conflict_strategy=ConflictStrategy.TARGET_WINS).sync()

        assert first.success
        assert first.stats.conflicts_detected == 1
        assert first.stats.conflicts_resolved == 1
        assert first.stats.items_updated == 0
        assert first.stats.items_skipped == 1
        assert target.tasks[conflicting].name == "Edited in target"

        second = make_engine(conflict_strategy=ConflictStrategy.TARGET_WINS).sync()
        assert second.stats.conflicts_detected == 0
        assert second.stats.items_updated == 0
        assert second.stats.items_skipped == 0

        _rename(source, "T1", "Write docs v3")
        third = make_engine(conflict_strategy=ConflictStrategy.TARGET_WINS).sync()
        assert third.stats.conflicts_detected == 0
        assert third.stats.items_updated == 1
        assert target.tasks[conflicting].name == "Write docs v3"

    def test_manual_reports_and_leaves_mapping(self, make_engine, target, state_path, conflicting):
        before = IdentityMapStore(state_path).load()

        result = make_engine(conflict_strategy=ConflictStrategy.MANUAL).sync()

        assert not result.success
        assert result.stats.conflicts_detected == 1
        assert result.stats.conflicts_resolved == 0
        assert result.stats.items_skipped == 1
        assert [(e.item_id, e.phase, e.kind) for e in result.errors] == [("T1", "conflict", "conflict")]
        assert target.tasks[conflicting].name == "Edited in target"
        assert IdentityMapStore(state_path).load() == before

        again = make_engine(conflict_strategy=ConflictStrategy.MANUAL).sync()
        assert again.stats.conflicts_detected == 1

    def test_target_only_change_is_not_a_conflict(self, make_engine, target, state_path):
        make_engine().sync()
        copy_id = {m.source_id: m.target_id for m in IdentityMapStore(state_path).load()}["T1"]
        _rename(target, copy_id, "Edited in target")

        result = make_engine(conflict_strategy=ConflictStrategy.MANUAL).sync()

        assert result.success
        assert result.stats.conflicts_detected == 0
        assert target.tasks[copy_id].name == "Edited in target"


class TestFieldSetChanges:
    @pytest.mark.parametrize(
        "strategy", [ConflictStrategy.MANUAL, ConflictStrategy.TARGET_WINS, ConflictStrategy.SOURCE_WINS]
    )
    def test_enabling_tags_is_not_a_conflict(self, make_engine, target, state_path, strategy):
        make_engine(sync_tags=False).sync()

        first = make_engine(sync_tags=True, conflict_strategy=strategy).sync()

        assert first.success
        assert first.stats.conflicts_detected == 0
        assert first.stats.items_updated == 1
        assert first.stats.items_skipped == 0
        assert target.by_name("Write docs").tags == frozenset({"doc"})
        fields = synced_fields(sync_tags=True, sync_sections=True)
        assert all(m.fields == fields for m in IdentityMapStore(state_path).load())

        again = make_engine(sync_tags=True, conflict_strategy=strategy).sync()
        assert again.success
        assert again.stats.conflicts_detected == 0
        assert again.stats.items_updated == 0

    def test_disabling_sections_rebaselines_quietly(self, make_engine, target, state_path):
        make_engine().sync()
        calls_before = len(target.mutating_calls)

        result = make_engine(sync_sections=False, conflict_strategy=ConflictStrategy.MANUAL).sync()

        assert result.success
        assert result.stats.items_updated == 0
        assert len(target.mutating_calls) == calls_before
        core_and_tags = synced_fields(sync_tags=True, sync_sections=False)
        assert all(m.fields == core_and_tags for m in IdentityMapStore(state_path).load())

    def test_real_target_edit_after_field_change_is_overwritten(self, make_engine, source, target, state_path):
        make_engine(sync_tags=False).sync()
        copy_id = {m.source_id: m.target_id for m in IdentityMapStore(state_path).load()}["T2"]
        _rename(target, copy_id, "Edited in target")

        result = make_engine(sync_tags=True, conflict_strategy=ConflictStrategy.MANUAL).sync()

        assert result.stats.conflicts_detected == 0
        assert target.tasks[copy_id].name == "Ship v1"

    def test_field_set_change_in_dry_run_keeps_state(self, make_engine, state_path):
        make_engine(sync_tags=False).sync()
        saved = state_path.read_text(encoding="utf-8")

        result = make_engine(sync_tags=True, dry_run=True).sync()

        assert result.stats.items_updated == 1
        assert state_path.read_text(encoding="utf-8") == saved


class TestConfigurationHandling:
    def test_configuration_is_not_mutated(self, source, target, store):
        config = SyncConfiguration(conflict_strategy="manual", direction="one-way")

        result = SyncEngine(source, target, store, config).sync()

        assert type(config.conflict_strategy) is str
        assert type(config.direction) is str
        assert result.direction == "one-way"

    def test_unknown_strategy_is_a_configuration_error(self, make_engine, target):
        engine = make_engine(conflict_strategy="newest-wins")

        with pytest.raises(ConfigurationError):
            engine.sync()

        assert engine.phase is SyncPhase.ERROR
        assert target.calls == []


class TestFatalErrors:
    def test_corrupt_state_aborts_before_mutation(self, make_engine, target, state_path):
        state_path.parent.mkdir(parents=True)
        state_path.write_text("{not json", encoding="utf-8")
        engine = make_engine()

        with pytest.raises(StateCorruptionError):
            engine.sync()

        assert engine.phase is SyncPhase.ERROR
        assert target.mutating_calls == []
        assert state_path.read_text(encoding="utf-8") == "{not json"

    def test_snapshot_failure_is_fatal(self, make_engine, source, target, state_path):
        make_engine().sync()
        saved = state_path.read_text(encoding="utf-8")
        calls_before = len(target.mutating_calls)
        _rename(source, "T1", "Would be updated")
        target.list_error = BackendError("connection refused")
        engine = make_engine()

        with pytest.raises(SnapshotFetchError) as excinfo:
            engine.sync()

        assert excinfo.value.backend == "target"
        assert engine.phase is SyncPhase.ERROR
        assert len(target.mutating_calls) == calls_before
        assert state_path.read_text(encoding="utf-8") == saved

    def test_unsupported_direction_is_rejected(self, make_engine, target):
        engine = make_engine(direction=SyncDirection.TWO_WAY)

        with pytest.raises(ConfigurationError):
            engine.sync()

        assert engine.phase is SyncPhase.ERROR
        assert target.calls == []

    def test_time_budget_persists_completed_actions(self, make_engine, target, state_path):
        target.write_delay = 0.2
        engine = make_engine(time_budget=0.1, sync_tags=False)

        with pytest.raises(SyncDeadlineExceeded):
            engine.sync()

        assert engine.phase is SyncPhase.ERROR
        assert len(target.tasks) == 1
        assert len(IdentityMapStore(state_path).load()) == 1


class TestFilterAndRelatedData:
    def test_filter_limits_created_items(self, make_engine, source, target):
        source.tasks["T3"] = TaskItem.build("T3", "Done already", completed=True)

        result = make_engine(filter=SyncFilter(completed=False)).sync()

        assert result.stats.items_checked == 2
        assert result.stats.items_created == 2
        assert all(not task.completed for task in target.tasks.values())

    def test_filtered_out_mapped_item_is_not_deleted(self, make_engine, source, target):
        make_engine().sync()
        source.tasks["T2"] = replace(source.tasks["T2"], completed=True)

        result = make_engine(filter=SyncFilter(completed=False)).sync()

        assert result.stats.items_deleted == 0
        assert len(target.tasks) == 2

    def test_missing_tags_and_sections_are_created(self, make_engine, source, target):
        source.tasks["T2"] = replace(source.tasks["T2"], section="Backlog")

        make_engine().sync()

        assert set(target.tags) == {"doc"}
        assert set(target.sections) == {"Backlog"}

    def test_related_data_failure_is_reported(self, make_engine, target):
        target.fail("create_tag", "doc")

        result = make_engine().sync()

        assert not result.success
        assert [error.phase for error in result.errors] == ["related-data"]
        assert result.stats.items_created == 2


class TestProgress:
    def test_phases_are_reported_in_order(self, make_engine, source):
        events = []
        make_engine(callbacks=SyncCallbacks(on_progress=lambda *args: events.append(args))).sync()

        phases = []
        for phase, _, _ in events:
            if not phases or phases[-1] != phase:
                phases.append(phase)
        assert phases == [
            "loading-state",
            "fetching-snapshots",
            "diffing",
            "applying",
            "persisting-state",
        ]
        applying = [(done, total) for phase, done, total in events if phase == "applying"]
        assert applying == [(0, 2), (1, 2), (2, 2)]

    def test_engine_ends_in_done(self, make_engine):
        engine = make_engine()
        result = engine.sync()

        assert engine.phase is SyncPhase.DONE
        assert result.duration_ms >= 0
        assert result.backends == ["source", "target"]
        assert result.to_dict()["stats"]["itemsCreated"] == 2


@pytest.mark.parametrize(
    "exc, kind",
    [
        (ConnectionError("reset"), "network"),
        (BackendError("Asana API error 500"), "backend"),
        (ValueError("bad due date"), "validation"),
        (RuntimeError("boom"), "unknown"),
    ],
)
def test_classify_error(exc, kind):
    assert classify_error(exc) == kind
