"""Shared fixtures."""

import io

import pytest
from PIL import Image

from trace_recorder.config import Config, StorageConfig
from trace_recorder.recording import AuditLog, RecordingManager
from trace_recorder.session import SessionStore

# 2024-01-15 10:30:00 UTC
START = 1_705_314_600_000


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeCapture:
    """Image source returning a tiny PNG, or failing on demand."""

    def __init__(self):
        buffer = io.BytesIO()
        Image.new("RGB", (2, 2), "black").save(buffer, format="PNG")
        self.png = buffer.getvalue()
        self.calls: list[str] = []
        self.error: Exception | None = None

    async def capture(self, owner, element_info=None):
        self.calls.append(owner)
        if self.error is not None:
            raise self.error
        return self.png


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return Config(storage=StorageConfig(sessions_dir=tmp_path / "sessions", audit_dir=tmp_path / "data"))


@pytest.fixture
def store(config):
    return SessionStore(config)


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def manager(config, store, capture, clock):
    return RecordingManager(
        config,
        store=store,
        capture=capture,
        audit=AuditLog(config.storage.audit_dir, clock),
        clock=clock,
    )
