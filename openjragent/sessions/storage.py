# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Session records and their storage backends."""
import asyncio
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from openjragent.core.exceptions import StorageError
from openjragent.core.state import AgentState, utc_now


_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class SessionData(BaseModel):
    """A persisted run.

    Attributes:
        id: Session identifier.
        state: Full agent state of the run.
        config: Configuration used for the run, with secrets stripped.
        created_at: When the session was first saved.
        updated_at: When the session was last saved.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    state: AgentState
    config: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class SessionStorage(Protocol):
    """CRUD and listing over session records keyed by id."""

    async def save(self, session: SessionData) -> None:
        """Create or overwrite a session."""
        ...

    async def load(self, session_id: str) -> SessionData | None:
        """Load a session, or None if it does not exist."""
        ...

    async def list(self) -> list[SessionData]:
        """All sessions, newest created first."""
        ...

    async def delete(self, session_id: str) -> bool:
        """Delete a session. Returns whether it existed."""
        ...


def _validate_session_id(session_id: str) -> str:
    if not _SESSION_ID_RE.match(session_id) or session_id in (".", ".."):
        raise StorageError(f"Invalid session id: {session_id!r}", details={"session_id": session_id})
    return session_id


class FileSessionStorage:
    """Stores each session as ``<id>.json`` inside a directory.

    Args:
        base_dir: Directory holding the session files. Created on first save.
    """

    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir).expanduser()

    def _path(self, session_id: str) -> Path:
        return self.base_dir / f"{_validate_session_id(session_id)}.json"

    async def save(self, session: SessionData) -> None:
        """Write a session file.

        Raises:
            StorageError: If the file cannot be written.
        """
        path = self._path(session.id)
        payload = session.model_dump_json(indent=2)

        def _write() -> None:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to save session {session.id}: {e}", details={"path": str(path)}) from e

    async def load(self, session_id: str) -> SessionData | None:
        """Read a session file.

        Raises:
            StorageError: If the file exists but cannot be read or parsed.
        """
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
            return SessionData.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            raise StorageError(f"Failed to load session {session_id}: {e}", details={"path": str(path)}) from e

    async def list(self) -> list[SessionData]:
        """Read every session file, skipping unreadable ones."""
        if not self.base_dir.exists():
            return []

        def _read_all() -> list[SessionData]:
            sessions = []
            for path in self.base_dir.glob("*.json"):
                try:
                    sessions.append(SessionData.model_validate_json(path.read_text(encoding="utf-8")))
                except (OSError, ValidationError) as e:
                    logger.warning("Skipping unreadable session file", path=str(path), error=str(e))
            return sessions

        try:
            sessions = await asyncio.to_thread(_read_all)
        except OSError as e:
            raise StorageError(f"Failed to list sessions in {self.base_dir}: {e}") from e
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    async def delete(self, session_id: str) -> bool:
        """Remove a session file.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        path = self._path(session_id)
        if not path.exists():
            return False
        try:
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            raise StorageError(f"Failed to delete session {session_id}: {e}", details={"path": str(path)}) from e
        return True


class InMemorySessionStorage:
    """Process-local session storage for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionData] = {}

    async def save(self, session: SessionData) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    async def load(self, session_id: str) -> SessionData | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def list(self) -> list[SessionData]:
        return sorted(
            (s.model_copy(deep=True) for s in self._sessions.values()),
            key=lambda s: s.created_at,
            reverse=True,
        )

    async def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None
