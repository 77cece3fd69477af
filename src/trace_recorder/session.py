"""Durable session store: one cleaned JSON snapshot per session id."""

import logging
import shutil
from pathlib import Path

import aiofiles
from pydantic import ValidationError

from trace_recorder.config import Config
from trace_recorder.errors import StorageError
from trace_recorder.models.session_state import Session
from trace_recorder.network import clean_session

logger = logging.getLogger(__name__)


class SessionStore:
    """Persists session snapshots under ``sessions_dir``.

    The store is the system of record for stopped sessions; live sessions
    are written to it periodically and once more on stop.
    """

    def __init__(self, config: Config | None = None):
        self.config = config or Config.load()
        self.sessions_dir = self.config.storage.sessions_dir
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def _session_dir(self, session_id: str) -> Path:
        """Get the directory for a specific session."""
        return self.sessions_dir / session_id

    def _snapshot_file(self, session_id: str) -> Path:
        """Get the snapshot file path for a session."""
        return self._session_dir(session_id) / "session.json"

    async def save(self, session: Session) -> Session:
        """Write a cleaned snapshot of a session.

        Args:
            session: Live or stopped session

        Returns:
            The snapshot that was written

        Raises:
            StorageError: If the snapshot cannot be written
        """
        snapshot = clean_session(session, self.config.storage, self.config.coalescing)

        try:
            session_dir = self._session_dir(session.session_id)
            session_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self._snapshot_file(session.session_id), "w") as f:
                await f.write(snapshot.model_dump_json(indent=2))
        except OSError as e:
            raise StorageError(f"Failed to save session {session.session_id}: {e}") from e

        logger.debug(
            "Saved session %s (%d events, %d requests)",
            session.session_id,
            len(snapshot.events),
            len(snapshot.network_requests),
        )
        return snapshot

    async def load(self, session_id: str) -> Session | None:
        """Load a session snapshot.

        Args:
            session_id: Session identifier to load

        Returns:
            Session if found, None otherwise
        """
        snapshot_file = self._snapshot_file(session_id)
        if not snapshot_file.exists():
            return None

        try:
            async with aiofiles.open(snapshot_file) as f:
                content = await f.read()
        except OSError as e:
            raise StorageError(f"Failed to read session {session_id}: {e}") from e

        try:
            return Session.model_validate_json(content)
        except ValidationError:
            logger.warning("Ignoring unreadable snapshot for session %s", session_id)
            return None

    async def list_sessions(self) -> dict[str, Session]:
        """All persisted sessions keyed by id, most recent first."""
        sessions: list[Session] = []
        if not self.sessions_dir.exists():
            return {}

        for session_dir in self.sessions_dir.iterdir():
            if session_dir.is_dir():
                session = await self.load(session_dir.name)
                if session:
                    sessions.append(session)

        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return {s.session_id: s for s in sessions}

    async def delete(self, session_id: str) -> bool:
        """Delete a persisted session.

        Returns:
            True if session was deleted, False if not found
        """
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return False

        shutil.rmtree(session_dir)
        return True
