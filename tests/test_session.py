"""Tests for the durable session store."""

import json

import pytest

from trace_recorder.errors import StorageError
from trace_recorder.models.network import Header, NetworkRequest
from trace_recorder.models.session_state import Session, SessionMetadata, TraceEvent


def make_session(session_id="session_1", start_time=1000, **kwargs):
    return Session(
        session_id=session_id,
        owner="tab-1",
        start_time=start_time,
        metadata=SessionMetadata(session_name="Test"),
        **kwargs,
    )


class TestSessionStore:
    async def test_save_and_load_session(self, store):
        session = make_session()
        session.events.append(TraceEvent(event_id="0001", timestamp=1100, type="click"))
        await store.save(session)

        loaded = await store.load("session_1")
        assert loaded is not None
        assert loaded.session_id == "session_1"
        assert loaded.metadata.session_name == "Test"
        assert loaded.events[0].type == "click"

    async def test_snapshot_file_layout(self, store, config):
        await store.save(make_session())
        snapshot_file = config.storage.sessions_dir / "session_1" / "session.json"
        assert snapshot_file.exists()
        assert json.loads(snapshot_file.read_text())["owner"] == "tab-1"

    async def test_snapshot_is_cleaned(self, store):
        session = make_session()
        session.network_requests.append(
            NetworkRequest(
                request_id="r1",
                owner="tab-1",
                url="https://x/api",
                timestamp=1000,
                request_headers=[Header(name="Authorization", value="Bearer x")],
                request_body="y" * 20_000,
            )
        )
        snapshot = await store.save(session)
        request = snapshot.network_requests[0]
        assert request.request_headers == []
        assert request.request_body.endswith("...[truncated]")
        # Live session untouched
        assert len(session.network_requests[0].request_body) == 20_000

    async def test_load_nonexistent(self, store):
        assert await store.load("nonexistent") is None

    async def test_load_invalid_snapshot(self, store, config):
        session_dir = config.storage.sessions_dir / "broken"
        session_dir.mkdir(parents=True)
        (session_dir / "session.json").write_text("{not json")
        assert await store.load("broken") is None

    async def test_list_sessions_newest_first(self, store):
        await store.save(make_session("old", start_time=1000))
        await store.save(make_session("new", start_time=5000))
        sessions = await store.list_sessions()
        assert list(sessions) == ["new", "old"]

    async def test_list_sessions_empty(self, store):
        assert await store.list_sessions() == {}

    async def test_delete_session(self, store):
        await store.save(make_session())
        assert await store.delete("session_1") is True
        assert await store.load("session_1") is None

    async def test_delete_nonexistent(self, store):
        assert await store.delete("nonexistent") is False

    async def test_save_failure_raises_storage_error(self, store, config):
        # A file where the session directory should be
        config.storage.sessions_dir.mkdir(parents=True, exist_ok=True)
        (config.storage.sessions_dir / "session_1").write_text("")
        with pytest.raises(StorageError):
            await store.save(make_session())
