# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Bounded in-memory snapshots of agent state for manual rollback."""
import itertools
from collections import OrderedDict
from datetime import datetime, timedelta

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from openjragent.core.state import AgentState, utc_now


class Snapshot(BaseModel):
    """A labelled deep copy of the agent state."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    created_at: datetime = Field(default_factory=utc_now)
    state: AgentState


class StateSnapshotManager:
    """Keeps at most ``max_snapshots`` snapshots, evicting the oldest first.

    Snapshots are deep copies on the way in and on the way out, so neither
    the caller's state nor a restored state shares anything with the store.
    """

    def __init__(self, max_snapshots: int = 10) -> None:
        if max_snapshots < 1:
            raise ValueError("max_snapshots must be at least 1")
        self.max_snapshots = max_snapshots
        self._snapshots: OrderedDict[str, Snapshot] = OrderedDict()
        self._sequence = itertools.count(1)

    def create_snapshot(self, state: AgentState, label: str = "snapshot") -> str:
        """Store a copy of ``state``.

        Returns:
            The snapshot id.
        """
        created_at = utc_now()
        snapshot_id = f"{label}_{int(created_at.timestamp() * 1000)}_{next(self._sequence)}"
        self._snapshots[snapshot_id] = Snapshot(
            id=snapshot_id, label=label, created_at=created_at, state=state.model_copy(deep=True)
        )
        while len(self._snapshots) > self.max_snapshots:
            evicted, _ = self._snapshots.popitem(last=False)
            logger.debug("Snapshot evicted", snapshot_id=evicted)
        logger.debug("Snapshot created", snapshot_id=snapshot_id, phase=str(state.phase))
        return snapshot_id

    def restore_snapshot(self, snapshot_id: str) -> AgentState | None:
        """Return a copy of the stored state, or None for an unknown id."""
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            logger.warning("Snapshot not found", snapshot_id=snapshot_id)
            return None
        return snapshot.state.model_copy(deep=True)

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        """Look up a snapshot without copying it."""
        return self._snapshots.get(snapshot_id)

    def delete_snapshot(self, snapshot_id: str) -> bool:
        """Delete a snapshot. Returns whether it existed."""
        return self._snapshots.pop(snapshot_id, None) is not None

    def list_snapshots(self) -> list[Snapshot]:
        """Snapshots ordered from oldest to newest."""
        return list(self._snapshots.values())

    @property
    def snapshot_count(self) -> int:
        """Number of stored snapshots."""
        return len(self._snapshots)

    def cleanup(self, max_age: float = 3600.0, now: datetime | None = None) -> int:
        """Drop snapshots whose state started more than ``max_age`` seconds ago.

        Returns:
            Number of snapshots removed.
        """
        cutoff = (now or utc_now()) - timedelta(seconds=max_age)
        stale = [sid for sid, snap in self._snapshots.items() if snap.state.start_time < cutoff]
        for sid in stale:
            del self._snapshots[sid]
        if stale:
            logger.debug("Snapshots cleaned up", removed=len(stale))
        return len(stale)

    def clear_all(self) -> None:
        """Remove every snapshot."""
        self._snapshots.clear()

    def memory_usage(self) -> int:
        """Approximate size of the stored snapshots in bytes, as serialized JSON."""
        return sum(len(snap.model_dump_json().encode("utf-8")) for snap in self._snapshots.values())
