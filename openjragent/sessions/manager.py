# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Session persistence, auto-save and retention."""
import asyncio
import contextlib
import json
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from openjragent.core.exceptions import StorageError, ValidationError as AgentValidationError
from openjragent.core.state import AgentState, new_id, utc_now
from openjragent.sessions.storage import SessionData, SessionStorage


SECRET_KEYS = frozenset({"api_key", "apikey", "password", "secret", "token", "access_token"})


def strip_secrets(value: Any) -> Any:
    """Return a copy of ``value`` without secret-bearing mapping keys.

    Keys are matched case-insensitively at any depth.
    """
    if isinstance(value, Mapping):
        return {
            k: strip_secrets(v)
            for k, v in value.items()
            if not (isinstance(k, str) and k.lower() in SECRET_KEYS)
        }
    if isinstance(value, list | tuple):
        return [strip_secrets(v) for v in value]
    return value


def _config_dict(config: BaseModel | Mapping[str, Any] | None) -> dict[str, Any]:
    if config is None:
        return {}
    if isinstance(config, BaseModel):
        return config.model_dump(mode="json")
    return dict(config)


class CleanupResult(BaseModel):
    """Outcome of a retention cleanup."""

    model_config = ConfigDict(frozen=True)

    sessions_deleted: int
    cutoff: datetime


class SessionStatistics(BaseModel):
    """Aggregate figures over stored sessions."""

    model_config = ConfigDict(frozen=True)

    total_sessions: int = 0
    oldest_session: datetime | None = None
    newest_session: datetime | None = None
    total_size: int = 0
    total_tokens: int = 0
    by_phase: dict[str, int] = Field(default_factory=dict)


ConfigSource = Callable[[], BaseModel | Mapping[str, Any] | None]


class SessionManager:
    """Saves, loads and maintains sessions against a storage backend.

    Attributes:
        storage: Session storage backend.
    """

    def __init__(self, storage: SessionStorage) -> None:
        self.storage = storage
        self._auto_save_task: asyncio.Task[None] | None = None

    async def save_session(
        self,
        state: AgentState,
        config: BaseModel | Mapping[str, Any] | None = None,
        session_id: str | None = None,
    ) -> str:
        """Persist a state and its sanitized config.

        Re-saving an existing session keeps its original creation time.

        Args:
            state: Agent state to persist.
            config: Configuration used for the run. Secrets are stripped.
            session_id: Existing session id, or None for a new session.

        Returns:
            The session id.

        Raises:
            StorageError: If the storage backend fails.
        """
        sid = session_id or new_id()
        created_at = utc_now()
        if session_id is not None:
            existing = await self.storage.load(session_id)
            if existing is not None:
                created_at = existing.created_at

        session = SessionData(
            id=sid,
            state=state.model_copy(deep=True),
            config=strip_secrets(_config_dict(config)),
            created_at=created_at,
            updated_at=utc_now(),
        )
        await self.storage.save(session)
        logger.info("Session saved", session_id=sid, phase=str(state.phase), iteration=state.current_iteration)
        return sid

    async def load_session(self, session_id: str) -> SessionData | None:
        """Load a session, or None if it does not exist."""
        session = await self.storage.load(session_id)
        if session is None:
            logger.warning("Session not found", session_id=session_id)
        return session

    async def list_sessions(self) -> list[SessionData]:
        """All sessions, newest first."""
        return await self.storage.list()

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session. Returns whether it existed."""
        deleted = await self.storage.delete(session_id)
        if deleted:
            logger.info("Session deleted", session_id=session_id)
        return deleted

    async def cleanup_old_sessions(self, max_age: float = 7 * 24 * 3600.0) -> CleanupResult:
        """Delete sessions not updated within ``max_age`` seconds.

        Returns:
            How many sessions were deleted and the cutoff used.
        """
        cutoff = utc_now() - timedelta(seconds=max_age)
        deleted = 0
        for session in await self.storage.list():
            if session.updated_at < cutoff and await self.storage.delete(session.id):
                deleted += 1
        logger.info("Session cleanup finished", sessions_deleted=deleted, cutoff=cutoff.isoformat())
        return CleanupResult(sessions_deleted=deleted, cutoff=cutoff)

    async def export_session(self, session_id: str) -> str | None:
        """Serialize a session to JSON, or None if it does not exist."""
        session = await self.storage.load(session_id)
        if session is None:
            return None
        return session.model_dump_json(indent=2)

    async def import_session(self, payload: str) -> str:
        """Store an exported session under a new id.

        Raises:
            ValidationError: If the payload is not a valid session export.
        """
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise AgentValidationError(f"Session import is not valid JSON: {e}") from e
        if not isinstance(data, dict) or not all(k in data for k in ("id", "state", "config")):
            raise AgentValidationError("Invalid session data: id, state and config are required")
        try:
            state = AgentState.model_validate(data["state"])
        except ValidationError as e:
            raise AgentValidationError(f"Invalid session state: {e}") from e

        now = utc_now()
        new_session = SessionData(
            id=new_id(),
            state=state,
            config=strip_secrets(data["config"] or {}),
            created_at=now,
            updated_at=now,
        )
        await self.storage.save(new_session)
        logger.info("Session imported", session_id=new_session.id, source_id=data["id"])
        return new_session.id

    async def get_statistics(self) -> SessionStatistics:
        """Summarize stored sessions."""
        sessions = await self.storage.list()
        if not sessions:
            return SessionStatistics()
        by_phase: dict[str, int] = {}
        for s in sessions:
            by_phase[str(s.state.phase)] = by_phase.get(str(s.state.phase), 0) + 1
        timestamps = [s.updated_at for s in sessions]
        return SessionStatistics(
            total_sessions=len(sessions),
            oldest_session=min(timestamps),
            newest_session=max(timestamps),
            total_size=sum(len(s.model_dump_json().encode("utf-8")) for s in sessions),
            total_tokens=sum(s.state.metadata.total_tokens for s in sessions),
            by_phase=by_phase,
        )

    def start_auto_save(
        self,
        get_state: Callable[[], AgentState],
        get_config: ConfigSource,
        session_id: str,
        interval: float = 60.0,
    ) -> None:
        """Save the session every ``interval`` seconds in a background task.

        Failures are logged and the loop keeps running. Any previous
        auto-save task is cancelled first.
        """
        self.stop_auto_save()

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.save_session(get_state(), get_config(), session_id)
                except StorageError as e:
                    logger.error("Auto-save failed", session_id=session_id, error=str(e))

        self._auto_save_task = asyncio.create_task(_loop())
        logger.debug("Auto-save started", session_id=session_id, interval=interval)

    def stop_auto_save(self) -> None:
        """Cancel the auto-save task, if any."""
        task, self._auto_save_task = self._auto_save_task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Auto-save stopped")

    @property
    def auto_save_running(self) -> bool:
        """Whether an auto-save task is active."""
        return self._auto_save_task is not None and not self._auto_save_task.done()

    async def aclose(self) -> None:
        """Stop auto-save and wait for the task to finish."""
        task = self._auto_save_task
        self.stop_auto_save()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
