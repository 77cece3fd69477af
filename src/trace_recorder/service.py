"""Command surface over the recorder: every command answers with a CommandResult."""

import base64
import logging
from typing import Any

from pydantic import BaseModel

from trace_recorder.errors import ExportError, SessionNotFoundError
from trace_recorder.export.exporter import ExportResult, SessionExporter
from trace_recorder.models.session_state import Session, SessionMetadata
from trace_recorder.recording import RecordingManager

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = "session_not_found"
ENCODING_ERROR = "encoding_error"


class CommandResult(BaseModel):
    """Outcome of one command."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def ok(cls, **data) -> "CommandResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, error_code: str) -> "CommandResult":
        return cls(success=False, error=error, error_code=error_code)


def _session_summary(session: Session | None) -> dict[str, Any] | None:
    if session is None:
        return None
    return {
        "session_id": session.session_id,
        "session_name": session.metadata.session_name,
        "state": session.state.value,
        "start_time": session.start_time,
        "end_time": session.end_time,
        "duration": session.duration,
        "event_count": len(session.events),
        "request_count": len(session.network_requests),
    }


class RecorderService:
    """Lifecycle commands never fail; export commands fail with a distinct error code."""

    def __init__(self, manager: RecordingManager, exporter: SessionExporter | None = None):
        self.manager = manager
        self.exporter = exporter or SessionExporter(manager.store, config=manager.config, manager=manager)

    async def start(self, owner: str, metadata: SessionMetadata | dict[str, Any] | None = None) -> CommandResult:
        session = await self.manager.start(owner, metadata)
        return CommandResult.ok(session=_session_summary(session))

    async def pause(self, owner: str) -> CommandResult:
        session = await self.manager.pause(owner)
        return CommandResult.ok(changed=session is not None, state=self.manager.get_state(owner).state.value)

    async def resume(self, owner: str) -> CommandResult:
        session = await self.manager.resume(owner)
        return CommandResult.ok(changed=session is not None, state=self.manager.get_state(owner).state.value)

    async def stop(self, owner: str) -> CommandResult:
        session = await self.manager.stop(owner)
        return CommandResult.ok(stopped=session is not None, session=_session_summary(session))

    def get_state(self, owner: str) -> CommandResult:
        return CommandResult.ok(**self.manager.get_state(owner).model_dump(mode="json"))

    async def list_sessions(self) -> CommandResult:
        sessions = await self.manager.store.list_sessions()
        return CommandResult.ok(sessions=[_session_summary(s) for s in sessions.values()])

    async def _export(self, kind: str, session_id: str) -> CommandResult:
        export = getattr(self.exporter, f"export_{kind}")
        try:
            result: ExportResult = await export(session_id)
        except SessionNotFoundError as e:
            return CommandResult.fail(str(e), SESSION_NOT_FOUND)
        except ExportError as e:
            logger.error("Export of %s as %s failed: %s", session_id, kind, e)
            return CommandResult.fail(str(e), ENCODING_ERROR)

        content = result.content
        if isinstance(content, bytes):
            return CommandResult.ok(
                filename=result.filename,
                content_base64=base64.b64encode(content).decode("ascii"),
                size=len(content),
                screenshot_count=result.screenshot_count,
            )
        return CommandResult.ok(filename=result.filename, content=content)

    async def export_markdown(self, session_id: str) -> CommandResult:
        return await self._export("markdown", session_id)

    async def export_archive(self, session_id: str) -> CommandResult:
        return await self._export("archive", session_id)

    async def export_json(self, session_id: str) -> CommandResult:
        return await self._export("json", session_id)
