"""Recording session state machine and the daily audit log."""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable, Coroutine
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles
from pydantic import ValidationError

from trace_recorder.coalescer import EventCoalescer
from trace_recorder.config import Config
from trace_recorder.correlation import CorrelationEngine
from trace_recorder.errors import StorageError
from trace_recorder.models.network import NetworkRequest
from trace_recorder.models.session_state import (
    RawEvent,
    RecordingState,
    RecordingStateView,
    Session,
    SessionMetadata,
    TraceEvent,
)
from trace_recorder.naming import (
    UNKNOWN_SLUG,
    default_session_name,
    extract_meaningful_name,
    is_default_name,
    name_from_url,
    session_slug,
)
from trace_recorder.network import RequestTracker
from trace_recorder.screenshots import ImageCapture, ScreenshotRegistry
from trace_recorder.session import SessionStore

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class AuditLog:
    """Appends lifecycle transitions to a daily JSONL file.

    Files are named ``actions_<YYYY-MM-DD>.jsonl`` under ``audit_dir`` and
    persist across sessions.
    """

    def __init__(self, audit_dir: Path, clock: Callable[[], int] = now_ms):
        self.audit_dir = Path(audit_dir)
        self.clock = clock

    def path_for(self, timestamp: int) -> Path:
        """Get the path of the log file covering ``timestamp``."""
        day = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
        return self.audit_dir / f"actions_{day}.jsonl"

    async def record(
        self,
        action: str,
        session_id: str | None = None,
        owner: str | None = None,
        duration_ms: int | None = None,
        **metadata,
    ) -> Path:
        """Log one lifecycle action.

        Args:
            action: Transition name (start, pause, resume, stop)
            session_id: Session ID for correlation
            owner: Owner key of the session
            duration_ms: Effective session duration at the time of the action
            **metadata: Additional fields

        Returns:
            Path of the file written to
        """
        timestamp = self.clock()
        entry = {
            "timestamp": datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat(),
            "action": action,
            "session_id": session_id,
            "owner": owner,
            "duration_ms": duration_ms,
            **metadata,
        }
        # Remove None values for cleaner logs
        entry = {k: v for k, v in entry.items() if v is not None}

        self.audit_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.path_for(timestamp)
        async with aiofiles.open(log_path, "a") as f:
            await f.write(json.dumps(entry) + "\n")
        return log_path


class RecordingManager:
    """Owns the live session table and every transition of a live session.

    Lifecycle operations never raise on bad preconditions: pausing a session
    that is not recording, resuming one that is not paused, stopping an
    owner with no session and ingesting while not recording are all no-ops.

    State is mutated synchronously; screenshot capture, periodic persistence
    and audit writes are spawned as tasks that ingestion never waits on.
    """

    def __init__(
        self,
        config: Config | None = None,
        store: SessionStore | None = None,
        capture: ImageCapture | None = None,
        screenshots: ScreenshotRegistry | None = None,
        audit: AuditLog | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config or Config.load()
        self.clock = clock
        self.store = store or SessionStore(self.config)
        self.capture = capture
        self.screenshots = screenshots or ScreenshotRegistry(self.config.screenshots)
        self.audit = audit or AuditLog(self.config.storage.audit_dir, clock)
        self.tracker = RequestTracker(self.config.correlation, clock)
        self.coalescer = EventCoalescer(self.config.coalescing)
        self.correlation = CorrelationEngine(self.config.correlation)

        self._sessions: dict[str, Session] = {}
        self._pending: set[asyncio.Task] = set()

    # Live table

    def get_session(self, owner: str) -> Session | None:
        return self._sessions.get(owner)

    @property
    def live_sessions(self) -> dict[str, Session]:
        return dict(self._sessions)

    def get_state(self, owner: str) -> RecordingStateView:
        session = self._sessions.get(owner)
        if session is None:
            return RecordingStateView()

        return RecordingStateView(
            state=session.state,
            session_id=session.session_id,
            session_name=session.metadata.session_name,
            start_time=session.start_time,
            end_time=session.end_time,
            duration=session.effective_duration(self.clock()),
            event_count=len(session.events),
            request_count=len(session.network_requests),
            last_event=session.last_event,
        )

    # Background work

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for all in-flight screenshot, persistence and audit tasks."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _persist(self, session: Session) -> None:
        try:
            await self.store.save(session)
        except StorageError:
            logger.exception("Failed to persist session %s", session.session_id)

    async def _audit(self, action: str, session: Session) -> None:
        try:
            await self.audit.record(
                action,
                session_id=session.session_id,
                owner=session.owner,
                duration_ms=session.effective_duration(self.clock()),
                state=session.state.value,
            )
        except OSError:
            logger.warning("Could not write audit entry for %s", action, exc_info=True)

    # Lifecycle

    async def start(self, owner: str, metadata: SessionMetadata | dict[str, Any] | None = None) -> Session:
        """Start recording for ``owner``, replacing any live session it has.

        Args:
            owner: Monitored context key (e.g. a tab id)
            metadata: Descriptive fields; ``session_name`` and
                ``application_url`` are the ones the recorder reads

        Returns:
            The new session, in the recording state
        """
        now = self.clock()
        if isinstance(metadata, SessionMetadata):
            metadata = metadata.model_copy(deep=True)
        else:
            metadata = SessionMetadata.model_validate(metadata or {})

        if not metadata.session_name:
            metadata.session_name = name_from_url(metadata.application_url) or default_session_name(now)
        metadata.original_session_name = metadata.session_name

        previous = self._sessions.get(owner)
        if previous is not None:
            logger.info("Replacing live session %s for %s", previous.session_id, owner)

        session = Session(
            session_id=f"session_{now}_{uuid.uuid4().hex[:9]}",
            owner=owner,
            start_time=now,
            metadata=metadata,
        )
        self._sessions[owner] = session
        logger.info("Recording started: %s (%s)", session.session_id, metadata.session_name)

        self._spawn(self._audit("start", session))
        return session

    async def pause(self, owner: str) -> Session | None:
        session = self._sessions.get(owner)
        if session is None or session.state != RecordingState.RECORDING:
            logger.debug("Ignoring pause for %s: not recording", owner)
            return None

        session.state = RecordingState.PAUSED
        session.pause_start = self.clock()
        logger.info("Recording paused: %s", session.session_id)

        self._spawn(self._audit("pause", session))
        return session

    async def resume(self, owner: str) -> Session | None:
        session = self._sessions.get(owner)
        if session is None or session.state != RecordingState.PAUSED:
            logger.debug("Ignoring resume for %s: not paused", owner)
            return None

        session.paused_time += self.clock() - session.pause_start
        session.pause_start = None
        session.state = RecordingState.RECORDING
        logger.info("Recording resumed: %s", session.session_id)

        self._spawn(self._audit("resume", session))
        return session

    async def stop(self, owner: str) -> Session | None:
        """Finalize, persist and release the live session of ``owner``.

        Returns:
            The stopped session, or None when there was nothing to stop
        """
        session = self._sessions.get(owner)
        if session is None:
            logger.debug("Ignoring stop for %s: no live session", owner)
            return None

        now = self.clock()
        if session.pause_start is not None:
            session.paused_time += now - session.pause_start
            session.pause_start = None

        session.end_time = now
        session.duration = session.end_time - session.start_time - session.paused_time
        session.state = RecordingState.STOPPED

        await self._persist(session)

        if self._sessions.get(owner) is session:
            del self._sessions[owner]

        logger.info(
            "Recording stopped: %s (%d events, %d requests, %d ms)",
            session.session_id,
            len(session.events),
            len(session.network_requests),
            session.duration,
        )
        self._spawn(self._audit("stop", session))
        return session

    async def update_metadata(self, owner: str, **fields) -> Session | None:
        session = self._sessions.get(owner)
        if session is None or session.state != RecordingState.RECORDING:
            return None

        for key, value in fields.items():
            setattr(session.metadata, key, value)
        return session

    # Ingestion

    async def ingest_event(self, owner: str, raw: RawEvent | dict[str, Any]) -> TraceEvent | None:
        """Accept an interaction event for ``owner`` while recording.

        Returns:
            The stored event (possibly an earlier event the new one was merged
            into), or None if the event was dropped
        """
        session = self._sessions.get(owner)
        if session is None or session.state != RecordingState.RECORDING:
            logger.debug("Dropping event for %s: not recording", owner)
            return None

        if isinstance(raw, dict):
            try:
                raw = RawEvent.from_dict(raw)
            except ValidationError:
                logger.debug("Dropping malformed event for %s", owner, exc_info=True)
                return None

        timestamp = raw.timestamp if raw.timestamp is not None else self.clock()
        event = TraceEvent.from_raw(raw, f"{len(session.events) + 1:04d}", timestamp)

        if self.coalescer.is_redundant(event, session.events):
            logger.debug("Dropping redundant %s event", event.type)
            return None
        if not self.coalescer.include_by_verbosity(event):
            logger.debug("Dropping %s event at %s verbosity", event.type, self.coalescer.config.verbosity)
            return None

        stored, merged = self.coalescer.add_event(session.events, event)
        candidates = self.tracker.candidates(owner, stored.timestamp)
        stored.correlated_requests = self.correlation.merge(stored, candidates)
        self._update_name(session, stored)

        if self.capture is not None and self.screenshots.should_capture(event.type):
            self._spawn(self._capture_screenshot(session, stored, event.type))

        if not merged and len(session.events) % self.config.storage.persist_every_events == 0:
            self._spawn(self._persist(session))

        return stored

    async def ingest_network_request(self, owner: str, request: NetworkRequest) -> bool:
        """Attach a completed request to the live session of ``owner``.

        Requests are attached in any live state, including paused; only
        ownership is checked here, relevance is decided upstream.
        """
        session = self._sessions.get(owner)
        if session is None or session.state == RecordingState.STOPPED or request.owner != owner:
            logger.debug("Dropping request %s for %s: no live session", request.request_id, owner)
            return False

        attached = request.model_copy(deep=True)
        nearby = [
            e for e in session.events if abs(e.timestamp - request.timestamp) <= self.config.correlation.window_ms
        ]
        attached.correlation = self.correlation.best_match(attached, nearby)
        for event in nearby:
            event.correlated_requests = self.correlation.merge(event, [attached])

        session.network_requests.append(attached)
        logger.debug("Network request added to session: %s %s", attached.method, attached.url)

        if len(session.network_requests) % self.config.storage.persist_every_requests == 0:
            self._spawn(self._persist(session))
        return True

    def _update_name(self, session: Session, event: TraceEvent) -> None:
        metadata = session.metadata
        semantics = (event.framework_context or {}).get("appSemantics")
        if semantics and metadata.app_semantics is None:
            metadata.app_semantics = semantics

        if metadata.name_updated_at is not None or not is_default_name(metadata):
            return

        name, app_info = extract_meaningful_name(event)
        if not name or name == metadata.session_name:
            return

        logger.info('Updating session name from "%s" to "%s"', metadata.session_name, name)
        metadata.session_name = name
        metadata.name_updated_at = self.clock()
        metadata.name_updated_reason = "first-meaningful-event"
        if app_info:
            metadata.app_info = app_info

    async def _capture_screenshot(self, session: Session, event: TraceEvent, event_type: str) -> None:
        event_id = event.event_id
        try:
            payload = await self.capture.capture(session.owner, event.element)
        except Exception:
            logger.warning("Screenshot capture failed for event %s", event_id, exc_info=True)
            return

        # The session may have been stopped or replaced while capturing
        if (
            self._sessions.get(session.owner) is not session
            or session.state == RecordingState.STOPPED
            or session.find_event(event_id) is None
        ):
            logger.debug("Discarding screenshot for event %s: session no longer live", event_id)
            return

        slug = session_slug(session)
        try:
            screenshot = self.screenshots.register(
                owner=session.owner,
                payload=payload,
                timestamp=self.clock(),
                event_type=event_type,
                event_id=event_id,
                app_context=None if slug == UNKNOWN_SLUG else slug,
                element_info=event.element,
                page_url=event.page_url,
                session_id=session.session_id,
            )
        except ValueError:
            logger.warning("Discarding undecodable screenshot for event %s", event_id, exc_info=True)
            return

        session.find_event(event_id).screenshot = screenshot.to_ref()
        logger.debug("Screenshot %s attached to event %s", screenshot.id, event_id)
