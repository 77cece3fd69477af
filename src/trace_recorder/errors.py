"""Custom exceptions for the recorder."""


class TraceRecorderError(Exception):
    """Base exception for recorder errors."""


class SessionNotFoundError(TraceRecorderError):
    """Raised when a session cannot be found live or in the durable store."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Session not found: {identifier}")


class ExportError(TraceRecorderError):
    """Raised when a session cannot be encoded into an export artifact."""


class CaptureError(TraceRecorderError):
    """Raised by image capture collaborators when no image could be taken."""


class StorageError(TraceRecorderError):
    """Raised when the durable store cannot read or write a snapshot."""
