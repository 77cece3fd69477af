"""Export products for recorded sessions: Markdown, JSON and the ZIP archive."""

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pydantic import BaseModel

from trace_recorder.config import Config
from trace_recorder.errors import ExportError, SessionNotFoundError, StorageError
from trace_recorder.export.archive import ZipArchiveWriter
from trace_recorder.export.markdown import analyze_odata_operations, generate_markdown, sequence_summary
from trace_recorder.models.session_state import Session
from trace_recorder.naming import semantic_basename
from trace_recorder.network import clean_session
from trace_recorder.screenshots import ScreenshotRegistry
from trace_recorder.session import SessionStore

if TYPE_CHECKING:
    from trace_recorder.recording import RecordingManager

logger = logging.getLogger(__name__)

JSON_FORMAT_VERSION = "1.1"


class ExportResult(BaseModel):
    """An exported artifact and its suggested filename."""

    content: str | bytes
    filename: str
    screenshot_count: int = 0


class SessionExporter:
    """Renders sessions found live or in the durable store.

    Raises :class:`SessionNotFoundError` for unknown sessions and
    :class:`ExportError` when rendering fails.
    """

    def __init__(
        self,
        store: SessionStore,
        screenshots: ScreenshotRegistry | None = None,
        config: Config | None = None,
        manager: "RecordingManager | None" = None,
        clock: Callable[[], int] | None = None,
    ):
        self.store = store
        self.config = config or store.config
        self.screenshots = screenshots or (manager.screenshots if manager else ScreenshotRegistry())
        self.manager = manager
        self.clock = clock or (manager.clock if manager else None)

    async def find_session(self, identifier: str) -> Session:
        """Live session by id or owner, else the persisted snapshot."""
        if self.manager is not None:
            for owner, session in self.manager.live_sessions.items():
                if identifier in (session.session_id, owner):
                    return session

        try:
            session = await self.store.load(identifier)
        except StorageError as e:
            raise ExportError(str(e)) from e
        if session is None:
            raise SessionNotFoundError(identifier)
        return session

    def _now(self) -> int:
        if self.clock is None:
            return int(datetime.now(timezone.utc).timestamp() * 1000)
        return self.clock()

    def _snapshot(self, session: Session) -> Session:
        snapshot = clean_session(session, self.config.storage, self.config.coalescing)
        # Live sessions have no final duration yet
        if snapshot.duration is None:
            snapshot.duration = session.effective_duration(self._now())
        return snapshot

    def _basename(self, session: Session) -> str:
        return semantic_basename(session, self.config.export.filename_prefix)

    def _exported_at(self) -> str:
        return datetime.fromtimestamp(self._now() / 1000, tz=timezone.utc).isoformat()

    def render_json(self, session: Session) -> str:
        snapshot = self._snapshot(session)
        screenshot_ids = {e.screenshot.id for e in session.events if e.screenshot}
        document = {
            "format_version": JSON_FORMAT_VERSION,
            "exported_at": self._exported_at(),
            "session": snapshot.model_dump(mode="json"),
            "summary": {
                "sequence_summary": sequence_summary(session),
                "odata_analysis": analyze_odata_operations(session.network_requests),
                "screenshot_count": len(screenshot_ids),
                "event_count": len(session.events),
                "network_request_count": len(session.network_requests),
            },
        }
        return json.dumps(document, indent=2)

    async def export_markdown(self, identifier: str) -> ExportResult:
        session = await self.find_session(identifier)
        try:
            content = generate_markdown(self._snapshot(session))
        except Exception as e:
            raise ExportError(f"Failed to render Markdown for {identifier}: {e}") from e
        return ExportResult(content=content, filename=f"{self._basename(session)}.md")

    async def export_json(self, identifier: str) -> ExportResult:
        session = await self.find_session(identifier)
        try:
            content = self.render_json(session)
        except Exception as e:
            raise ExportError(f"Failed to render JSON for {identifier}: {e}") from e
        return ExportResult(content=content, filename=f"{self._basename(session)}.json")

    async def export_archive(self, identifier: str) -> ExportResult:
        """ZIP with the Markdown report, the JSON document and every still-held screenshot."""
        session = await self.find_session(identifier)
        base = self._basename(session)

        try:
            writer = ZipArchiveWriter()
            writer.add_text(f"{base}.md", generate_markdown(self._snapshot(session)))
            writer.add_text(f"{base}.json", self.render_json(session))

            added: set[str] = set()
            for event in session.events:
                if event.screenshot is None or event.screenshot.id in added:
                    continue
                screenshot = self.screenshots.get(event.screenshot.id)
                if screenshot is None:
                    logger.debug("Screenshot %s no longer held, skipping", event.screenshot.id)
                    continue
                writer.add_file(screenshot.filename, screenshot.data)
                added.add(screenshot.id)

            content = writer.build()
        except Exception as e:
            raise ExportError(f"Failed to build archive for {identifier}: {e}") from e

        logger.info("Exported archive %s.zip with %d screenshots", base, len(added))
        return ExportResult(content=content, filename=f"{base}.zip", screenshot_count=len(added))
