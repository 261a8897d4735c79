"""Tests for StateSnapshotManager."""

from datetime import timedelta

import pytest

from openjragent.core.state import AgentPhase, AgentState, utc_now
from openjragent.resilience.snapshot import StateSnapshotManager


def test_create_and_restore_returns_copy():
    manager = StateSnapshotManager()
    state = AgentState(current_iteration=2)

    snapshot_id = manager.create_snapshot(state, "before_exec")
    restored = manager.restore_snapshot(snapshot_id)

    assert snapshot_id.startswith("before_exec_")
    assert restored == state
    assert restored is not state


def test_restore_unknown_returns_none():
    assert StateSnapshotManager().restore_snapshot("missing") is None


def test_keeps_at_most_max_snapshots_evicting_oldest():
    manager = StateSnapshotManager(max_snapshots=3)
    ids = [manager.create_snapshot(AgentState(current_iteration=i), f"s{i}") for i in range(5)]

    assert manager.snapshot_count == 3
    assert [s.id for s in manager.list_snapshots()] == ids[2:]
    assert manager.restore_snapshot(ids[0]) is None


def test_ids_are_unique_for_same_label():
    manager = StateSnapshotManager()
    ids = {manager.create_snapshot(AgentState(), "same") for _ in range(5)}
    assert len(ids) == 5


def test_delete_and_clear():
    manager = StateSnapshotManager()
    sid = manager.create_snapshot(AgentState())
    assert manager.delete_snapshot(sid)
    assert not manager.delete_snapshot(sid)

    manager.create_snapshot(AgentState())
    manager.clear_all()
    assert manager.snapshot_count == 0


def test_cleanup_by_age():
    manager = StateSnapshotManager()
    old = AgentState(start_time=utc_now() - timedelta(hours=2))
    manager.create_snapshot(old, "old")
    fresh_id = manager.create_snapshot(AgentState(phase=AgentPhase.EXECUTING), "fresh")

    assert manager.cleanup(max_age=3600) == 1
    assert [s.id for s in manager.list_snapshots()] == [fresh_id]


def test_memory_usage_grows():
    manager = StateSnapshotManager()
    assert manager.memory_usage() == 0
    manager.create_snapshot(AgentState())
    assert manager.memory_usage() > 0


def test_invalid_max():
    with pytest.raises(ValueError):
        StateSnapshotManager(max_snapshots=0)
