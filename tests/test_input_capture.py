"""Tests for the DOM event source."""

import json
from unittest.mock import AsyncMock, MagicMock

from trace_recorder.input_capture import (
    EVENT_PREFIX,
    RESPONSE_PREFIX,
    TRACE_CAPTURE_SCRIPT,
    JSInputCapture,
    parse_console_message,
)
from trace_recorder.interception import CapturedResponse
from trace_recorder.models.session_state import RawEvent


def event_line(**data):
    return EVENT_PREFIX + json.dumps(data)


class TestParseConsoleMessage:
    def test_event(self):
        message = parse_console_message(
            event_line(type="click", timestamp=5, pageUrl="https://host", element={"tagName": "BUTTON"})
        )
        assert isinstance(message, RawEvent)
        assert message.type == "click"
        assert message.page_url == "https://host"

    def test_response(self):
        line = RESPONSE_PREFIX + json.dumps({"url": "https://host/api", "start_time": 7, "status": 200, "data": "{}"})
        message = parse_console_message(line)
        assert isinstance(message, CapturedResponse)
        assert message.key == "https://host/api:7"

    def test_unrelated_line(self):
        assert parse_console_message("hello world") is None

    def test_malformed_payload(self):
        assert parse_console_message(EVENT_PREFIX + "{not json") is None
        assert parse_console_message(EVENT_PREFIX + json.dumps({"timestamp": 1})) is None


class TestJSInputCapture:
    async def test_dispatches_events_and_responses(self):
        on_event = AsyncMock()
        on_response = MagicMock()
        capture = JSInputCapture(on_event=on_event, on_response=on_response)

        await capture.handle_console_text(event_line(type="submit"))
        await capture.handle_console_text(RESPONSE_PREFIX + json.dumps({"url": "u", "start_time": 1}))
        await capture.handle_console_text("noise")

        on_event.assert_awaited_once()
        assert on_event.await_args.args[0].type == "submit"
        on_response.assert_called_once()

    async def test_install_once(self):
        context = MagicMock()
        context.add_init_script = AsyncMock()
        capture = JSInputCapture()
        await capture.install(context)
        await capture.install(context)
        context.add_init_script.assert_awaited_once_with(TRACE_CAPTURE_SCRIPT)

    async def test_attach_registers_console_listener(self):
        page = MagicMock()
        await JSInputCapture().attach_to_page(page)
        assert page.on.call_args.args[0] == "console"

    def test_script_reports_with_prefixes(self):
        script = JSInputCapture.get_init_script()
        assert EVENT_PREFIX in script
        assert RESPONSE_PREFIX in script
