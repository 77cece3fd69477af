"""Data models for the trace recorder."""

from trace_recorder.models.network import (
    BatchOperation,
    CorrelatedRequest,
    Correlation,
    Header,
    NetworkRequest,
    ODataAnalysis,
)
from trace_recorder.models.session_state import (
    RawEvent,
    RecordingState,
    RecordingStateView,
    ScreenshotRef,
    Session,
    SessionMetadata,
    TraceEvent,
)

__all__ = [
    "BatchOperation",
    "CorrelatedRequest",
    "Correlation",
    "Header",
    "NetworkRequest",
    "ODataAnalysis",
    "RawEvent",
    "RecordingState",
    "RecordingStateView",
    "ScreenshotRef",
    "Session",
    "SessionMetadata",
    "TraceEvent",
]
