"""Trace Recorder - record browser interactions and the network traffic they cause."""

from trace_recorder.config import Config
from trace_recorder.export import SessionExporter
from trace_recorder.interception import NetworkInterceptor
from trace_recorder.recording import AuditLog, RecordingManager
from trace_recorder.screenshots import ScreenshotRegistry
from trace_recorder.service import CommandResult, RecorderService
from trace_recorder.session import SessionStore

__version__ = "0.1.0"

__all__ = [
    "AuditLog",
    "CommandResult",
    "Config",
    "NetworkInterceptor",
    "RecorderService",
    "RecordingManager",
    "ScreenshotRegistry",
    "SessionExporter",
    "SessionStore",
]
