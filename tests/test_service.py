"""Tests for the command surface."""

import base64
import io
import zipfile
from unittest.mock import AsyncMock

import pytest

from trace_recorder.errors import ExportError
from trace_recorder.service import ENCODING_ERROR, SESSION_NOT_FOUND, CommandResult, RecorderService


@pytest.fixture
def service(manager):
    return RecorderService(manager)


class TestCommandResult:
    def test_ok(self):
        result = CommandResult.ok(changed=True)
        assert result.success is True
        assert result.data == {"changed": True}
        assert result.error is None

    def test_fail(self):
        result = CommandResult.fail("nope", SESSION_NOT_FOUND)
        assert result.success is False
        assert result.error_code == SESSION_NOT_FOUND


class TestLifecycleCommands:
    async def test_start_and_state(self, service):
        result = await service.start("tab-1", {"session_name": "Demo"})
        assert result.success is True
        assert result.data["session"]["session_name"] == "Demo"

        state = service.get_state("tab-1")
        assert state.data["state"] == "recording"
        assert state.data["session_id"] == result.data["session"]["session_id"]
        await service.manager.drain()

    async def test_pause_resume_report_change(self, service):
        await service.start("tab-1")
        assert (await service.pause("tab-1")).data == {"changed": True, "state": "paused"}
        assert (await service.pause("tab-1")).data == {"changed": False, "state": "paused"}
        assert (await service.resume("tab-1")).data == {"changed": True, "state": "recording"}
        await service.manager.drain()

    async def test_stop_without_session_succeeds(self, service):
        result = await service.stop("tab-1")
        assert result.success is True
        assert result.data == {"stopped": False, "session": None}

    async def test_stop_returns_summary(self, service):
        await service.start("tab-1")
        result = await service.stop("tab-1")
        assert result.data["stopped"] is True
        assert result.data["session"]["state"] == "stopped"
        assert service.get_state("tab-1").data["state"] == "idle"
        await service.manager.drain()

    async def test_list_sessions(self, service):
        await service.start("tab-1")
        await service.stop("tab-1")
        result = await service.list_sessions()
        assert len(result.data["sessions"]) == 1
        await service.manager.drain()


class TestExportCommands:
    async def test_unknown_session(self, service):
        result = await service.export_markdown("missing")
        assert result.success is False
        assert result.error_code == SESSION_NOT_FOUND
        assert "missing" in result.error

    async def test_markdown(self, service):
        start = await service.start("tab-1", {"session_name": "Demo"})
        await service.stop("tab-1")
        result = await service.export_markdown(start.data["session"]["session_id"])
        assert result.success is True
        assert result.data["filename"].endswith("-demo.md")
        assert result.data["content"].startswith("# Demo")
        await service.manager.drain()

    async def test_archive_is_base64(self, service):
        start = await service.start("tab-1")
        await service.stop("tab-1")
        result = await service.export_archive(start.data["session"]["session_id"])
        content = base64.b64decode(result.data["content_base64"])
        assert result.data["size"] == len(content)
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            assert len(archive.namelist()) == 2
        await service.manager.drain()

    async def test_encoding_failure(self, service):
        service.exporter.export_json = AsyncMock(side_effect=ExportError("bad data"))
        result = await service.export_json("session_1")
        assert result.success is False
        assert result.error_code == ENCODING_ERROR
        assert result.error == "bad data"
