"""Pydantic models for recording sessions and their events."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from trace_recorder.models.network import CorrelatedRequest, NetworkRequest


class RecordingState(str, Enum):
    """Lifecycle state of a recording session."""

    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


class ScreenshotRef(BaseModel):
    """Reference from an event to a registered screenshot."""

    id: str
    filename: str
    timestamp: int
    event_type: str | None = None


class RawEvent(BaseModel):
    """Interaction event as delivered by the event source.

    Accepts the browser's camelCase keys; anything unrecognised lands in
    ``payload`` when built through :meth:`from_dict`.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    timestamp: int | None = None
    element: dict[str, Any] | None = None
    framework_context: dict[str, Any] | None = Field(default=None, alias="ui5Context")
    value: str | None = None
    key: str | None = None
    coordinates: dict[str, Any] | None = None
    modifiers: dict[str, Any] | None = None
    page_url: str | None = Field(default=None, alias="pageUrl")
    page_title: str | None = Field(default=None, alias="pageTitle")
    initial_value: str | None = Field(default=None, alias="initialValue")
    final_value: str | None = Field(default=None, alias="finalValue")
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawEvent":
        known: set[str] = set()
        for name, field in cls.model_fields.items():
            known.add(name)
            if field.alias:
                known.add(field.alias)
        extras = {k: v for k, v in data.items() if k not in known}
        payload = {**data.get("payload", {}), **extras}
        return cls.model_validate({**{k: v for k, v in data.items() if k in known}, "payload": payload})


class TraceEvent(BaseModel):
    """Captured interaction, after coalescing."""

    event_id: str
    timestamp: int
    type: str
    element: dict[str, Any] | None = None
    framework_context: dict[str, Any] | None = None
    value: str | None = None
    key: str | None = None
    coordinates: dict[str, Any] | None = None
    modifiers: dict[str, Any] | None = None
    page_url: str | None = None
    page_title: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    screenshot: ScreenshotRef | None = None
    correlated_requests: list[CorrelatedRequest] = Field(default_factory=list)

    # Coalescing
    is_coalesced: bool = False
    edit_count: int | None = None
    initial_value: str | None = None
    final_value: str | None = None
    intermediate_values: list[str] | None = None
    had_backspace: bool | None = None
    had_pause: bool | None = None
    end_time: int | None = None
    duration: int | None = None

    # Editing consolidation
    has_changed: bool | None = None

    @classmethod
    def from_raw(cls, raw: RawEvent, event_id: str, timestamp: int) -> "TraceEvent":
        return cls(
            event_id=event_id,
            timestamp=timestamp,
            type=raw.type,
            element=raw.element,
            framework_context=raw.framework_context,
            value=raw.value,
            key=raw.key,
            coordinates=raw.coordinates,
            modifiers=raw.modifiers,
            page_url=raw.page_url,
            page_title=raw.page_title,
            initial_value=raw.initial_value,
            final_value=raw.final_value,
            payload=dict(raw.payload),
        )


class SessionMetadata(BaseModel):
    """Descriptive session fields; free-form extras are kept."""

    model_config = ConfigDict(extra="allow")

    session_name: str = ""
    original_session_name: str | None = None
    application_url: str | None = None
    app_semantics: dict[str, Any] | None = None
    app_info: dict[str, Any] | None = None
    name_updated_at: int | None = None
    name_updated_reason: str | None = None


class Session(BaseModel):
    """The unit of recording.

    ``paused_time`` plus the active intervals always equals the elapsed time;
    ``pause_start`` is set only while a pause is in progress.
    """

    session_id: str
    owner: str
    start_time: int
    end_time: int | None = None
    paused_time: int = 0
    pause_start: int | None = None
    duration: int | None = None
    state: RecordingState = RecordingState.RECORDING
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
    events: list[TraceEvent] = Field(default_factory=list)
    network_requests: list[NetworkRequest] = Field(default_factory=list)

    def effective_duration(self, now: int) -> int:
        """Active recording time in milliseconds."""
        if self.state == RecordingState.STOPPED and self.duration is not None:
            return self.duration
        active_pause = now - self.pause_start if self.pause_start is not None else 0
        return (now - self.start_time) - self.paused_time - active_pause

    def find_event(self, event_id: str) -> TraceEvent | None:
        for event in self.events:
            if event.event_id == event_id:
                return event
        return None

    @property
    def last_event(self) -> TraceEvent | None:
        return self.events[-1] if self.events else None


class RecordingStateView(BaseModel):
    """Read-only view of an owner's recording state."""

    state: RecordingState = RecordingState.IDLE
    session_id: str | None = None
    session_name: str | None = None
    start_time: int | None = None
    end_time: int | None = None
    duration: int = 0
    event_count: int = 0
    request_count: int = 0
    last_event: TraceEvent | None = None
