"""MCP server exposing the trace recorder.

A single browser is driven per server process; each page it opens is an
owner whose interactions and requests are recorded into a session.
"""

import asyncio
import base64
import logging
from pathlib import Path
from typing import Any

import aiofiles
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from trace_recorder.browser import RecordingBrowser
from trace_recorder.config import Config
from trace_recorder.logger import configure_logging
from trace_recorder.recording import RecordingManager
from trace_recorder.service import CommandResult, RecorderService

logger = logging.getLogger(__name__)

# Global instances
_config: Config | None = None
_manager: RecordingManager | None = None
_service: RecorderService | None = None
_browser: RecordingBrowser | None = None
_current_owner: str | None = None

NO_BROWSER = "Browser not running. Call browser_start first."

_OWNER_PROPERTY = {
    "owner": {
        "type": "string",
        "description": "Page owner id. Defaults to the page opened most recently.",
    },
}
_EXPORT_PROPERTIES = {
    "session_id": {
        "type": "string",
        "description": "Session id (or owner of a live session) to export.",
    },
    "output_dir": {
        "type": "string",
        "description": "Optional directory to write the export into instead of returning its content.",
    },
}


def _get_service() -> RecorderService:
    """Get or create the recorder service."""
    global _config, _manager, _service
    if _service is None:
        _config = Config.load()
        _manager = RecordingManager(_config)
        _service = RecorderService(_manager)
    return _service


def _result(result: CommandResult) -> list[TextContent]:
    return [TextContent(type="text", text=result.model_dump_json(indent=2))]


def _owner(arguments: dict[str, Any]) -> str | None:
    return arguments.get("owner") or _current_owner


async def _write_export(result: CommandResult, output_dir: str) -> CommandResult:
    """Write a successful export to ``output_dir`` and replace its content with the path."""
    if not result.success or result.data is None:
        return result

    data = dict(result.data)
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / data["filename"]

    if "content_base64" in data:
        async with aiofiles.open(path, "wb") as f:
            await f.write(base64.b64decode(data.pop("content_base64")))
    else:
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(data.pop("content"))

    data["path"] = str(path)
    logger.info("Export written to %s", path)
    return CommandResult(success=True, data=data)


# Create MCP server
server = Server("trace-recorder")


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="browser_start",
            description="Launch the recording browser and open a first page. Returns the page's owner id.",
            inputSchema={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "Initial URL to open."},
                    "headless": {"type": "boolean", "description": "Run headless. Default: from config."},
                },
            },
        ),
        Tool(
            name="browser_open_page",
            description="Open another page in the recording browser. Returns its owner id.",
            inputSchema={
                "type": "object",
                "properties": {"url": {"type": "string", "description": "URL to open."}},
            },
        ),
        Tool(
            name="browser_stop",
            description="Stop every live recording and close the browser.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="recording_start",
            description="Start recording a new session for a page. Replaces any live session of that page.",
            inputSchema={
                "type": "object",
                "properties": {
                    **_OWNER_PROPERTY,
                    "session_name": {"type": "string", "description": "Optional session name."},
                    "url": {"type": "string", "description": "Page URL used to name the session."},
                },
            },
        ),
        Tool(
            name="recording_pause",
            description="Pause the recording of a page. Network requests are still attached while paused.",
            inputSchema={"type": "object", "properties": dict(_OWNER_PROPERTY)},
        ),
        Tool(
            name="recording_resume",
            description="Resume a paused recording.",
            inputSchema={"type": "object", "properties": dict(_OWNER_PROPERTY)},
        ),
        Tool(
            name="recording_stop",
            description="Stop the recording of a page and persist the session.",
            inputSchema={"type": "object", "properties": dict(_OWNER_PROPERTY)},
        ),
        Tool(
            name="recording_state",
            description="Get the recording state of a page: state, counts, duration and last event.",
            inputSchema={"type": "object", "properties": dict(_OWNER_PROPERTY)},
        ),
        Tool(
            name="recording_list_sessions",
            description="List persisted sessions, newest first.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="export_markdown",
            description="Export a session as a Markdown report.",
            inputSchema={"type": "object", "properties": dict(_EXPORT_PROPERTIES), "required": ["session_id"]},
        ),
        Tool(
            name="export_json",
            description="Export a session as a JSON document.",
            inputSchema={"type": "object", "properties": dict(_EXPORT_PROPERTIES), "required": ["session_id"]},
        ),
        Tool(
            name="export_archive",
            description="Export a session as a ZIP archive with report, JSON and screenshots.",
            inputSchema={"type": "object", "properties": dict(_EXPORT_PROPERTIES), "required": ["session_id"]},
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    global _browser, _current_owner

    service = _get_service()

    try:
        if name == "browser_start":
            if _browser is not None:
                return [TextContent(type="text", text="Browser already running. Stop it first.")]

            _browser = RecordingBrowser(service.manager, headless=arguments.get("headless"))
            await _browser.start()
            _current_owner = await _browser.new_page(arguments.get("url"))
            return _result(CommandResult.ok(owner=_current_owner))

        elif name == "browser_open_page":
            if _browser is None:
                return [TextContent(type="text", text=NO_BROWSER)]

            _current_owner = await _browser.new_page(arguments.get("url"))
            return _result(CommandResult.ok(owner=_current_owner))

        elif name == "browser_stop":
            if _browser is None:
                return [TextContent(type="text", text="No browser running.")]

            await _browser.stop()
            await service.manager.drain()
            _browser = None
            _current_owner = None
            return [TextContent(type="text", text="Browser stopped.")]

        elif name.startswith("recording_") and name != "recording_list_sessions":
            owner = _owner(arguments)
            if owner is None:
                return [TextContent(type="text", text=NO_BROWSER)]

            if name == "recording_start":
                url = arguments.get("url")
                if not url and _browser is not None and owner in _browser.owners:
                    url = _browser.page_for(owner).url
                metadata = {"session_name": arguments.get("session_name") or "", "application_url": url}
                return _result(await service.start(owner, metadata))
            elif name == "recording_pause":
                return _result(await service.pause(owner))
            elif name == "recording_resume":
                return _result(await service.resume(owner))
            elif name == "recording_stop":
                return _result(await service.stop(owner))
            elif name == "recording_state":
                return _result(service.get_state(owner))

        elif name == "recording_list_sessions":
            return _result(await service.list_sessions())

        elif name in ("export_markdown", "export_json", "export_archive"):
            export = getattr(service, name)
            result = await export(arguments["session_id"])
            if arguments.get("output_dir"):
                result = await _write_export(result, arguments["output_dir"])
            return _result(result)

        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    except Exception as e:
        logger.error("Tool %s failed: %s", name, e, exc_info=True)
        return [TextContent(type="text", text=f"Error: {e}")]


async def run_server():
    """Run the MCP server."""
    service = _get_service()
    configure_logging(service.manager.config.log_level)

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        if _browser is not None:
            await _browser.stop()
        await service.manager.drain()


def main():
    """Main entry point."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
