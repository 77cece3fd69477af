"""Deterministic Markdown report for a finalized session."""

import re
from datetime import datetime, timezone
from typing import Any

from trace_recorder.models.network import NetworkRequest
from trace_recorder.models.session_state import Session, TraceEvent
from trace_recorder.naming import name_from_url

BATCH_LINE_PATTERN = re.compile(r"(GET|POST|MERGE)\s+(\w+)")
ENTITY_PATTERN = re.compile(r"/([A-Z][a-zA-Z0-9_]+)(?:\(|$|\?)")
SERVICE_PATTERN = re.compile(r"/([A-Z_]+)_SRV")
BODY_PREVIEW_CHARS = 500


def _iso(timestamp: int | None) -> str:
    if timestamp is None:
        return "Unknown"
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def analyze_odata_operations(requests: list[NetworkRequest]) -> dict[str, Any]:
    """Entity/operation tokens found in OData request bodies, plus a per-request operation kind."""
    entities: dict[str, list[str]] = {}
    operations: list[dict[str, str]] = []

    for request in requests:
        if "odata" not in request.type:
            continue

        url_parts = request.url.split("/")
        odata_index = next((i for i, part in enumerate(url_parts) if "odata" in part), None)
        has_service = odata_index is not None and odata_index + 1 < len(url_parts) and url_parts[odata_index + 1]
        if has_service and isinstance(request.request_body, str):
            for line in request.request_body.split("\n"):
                match = BATCH_LINE_PATTERN.search(line)
                if match:
                    method, entity = match.groups()
                    methods = entities.setdefault(entity, [])
                    if method not in methods:
                        methods.append(method)

        body = request.body_text()
        if "MERGE" in body:
            operations.append({"type": "UPDATE", "description": "Entity update operation"})
        elif "POST" in body and "$batch" not in request.url:
            operations.append({"type": "CREATE", "description": "Entity creation operation"})
        elif "$batch" in request.url:
            operations.append({"type": "BATCH", "description": "Batch operation with multiple requests"})
        elif request.method == "GET":
            operations.append({"type": "READ", "description": "Data retrieval operation"})

    return {
        "entities": [{"name": name, "operations": ops} for name, ops in entities.items()],
        "operations": operations,
    }


def extract_entity_from_url(url: str) -> str | None:
    match = ENTITY_PATTERN.search(url)
    if match:
        return match.group(1)
    match = SERVICE_PATTERN.search(url)
    return match.group(1) if match else None


def event_target(event: TraceEvent) -> str:
    element = event.element or {}
    tag = element.get("tagName")
    if not tag:
        return "unknown"
    target = tag.lower()
    if element.get("id"):
        target += f"#{element['id']}"
    if element.get("textContent"):
        target += f' ("{element["textContent"][:20]}")'
    return target


def sequence_summary(session: Session) -> dict[str, Any]:
    """Actors, entities and interactions, in event order."""
    entities: list[str] = []
    interactions = []
    odata_operations = []

    for event in session.events:
        interactions.append(
            {
                "event_id": event.event_id,
                "type": event.type,
                "actor": "User",
                "target": event_target(event),
                "timestamp": event.timestamp,
                "has_screenshot": event.screenshot is not None,
            }
        )
        for request in event.correlated_requests:
            if "odata" not in request.type:
                continue
            entity = extract_entity_from_url(request.url)
            if entity:
                if entity not in entities:
                    entities.append(entity)
                odata_operations.append(
                    {
                        "event_id": event.event_id,
                        "entity": entity,
                        "operation": request.method,
                        "confidence": request.correlation.confidence,
                    }
                )

    return {
        "actors": ["User"],
        "entities": entities,
        "interactions": interactions,
        "odata_operations": odata_operations,
    }


def report_title(session: Session) -> str:
    title = name_from_url(session.metadata.application_url) or session.metadata.session_name or "Recorded Session"

    services: list[str] = []
    for request in session.network_requests:
        if "odata" in request.type:
            match = re.search(r"/([A-Z_]+_SRV)", request.url)
            if match and match.group(1) not in services:
                services.append(match.group(1))
    if services:
        title += f" ({', '.join(services)})"
    return title


def format_event_title(event: TraceEvent) -> str:
    if event.type == "click":
        tag = (event.element or {}).get("tagName")
        return f"Click on {tag.lower() if tag else 'element'}"
    if event.type == "input":
        if event.is_coalesced:
            return f'Input: "{event.final_value}" ({event.edit_count} edits)'
        return f'Input: "{event.value}"'
    if event.type == "field_edit":
        return f'Edit field: "{event.initial_value}" → "{event.final_value}"'
    if event.type == "keyboard":
        return f"Key press: {event.key}"
    if event.type == "submit":
        return "Form submission"
    return f"{event.type} event"


def _event_section(index: int, event: TraceEvent, session: Session) -> list[str]:
    relative = round((event.timestamp - session.start_time) / 1000)
    lines = [f"### {index}. {format_event_title(event)} (+{relative}s)", ""]

    if event.screenshot:
        lines += [f"![Event Screenshot]({event.screenshot.filename})", ""]

    lines += ["**Details:**", f"- **Type**: {event.type}", f"- **Time**: {_iso(event.timestamp)}"]

    element = event.element
    if element:
        target = element.get("tagName") or "element"
        if element.get("id"):
            target += f"#{element['id']}"
        lines.append(f"- **Element**: {target}")
        if element.get("textContent"):
            lines.append(f'- **Text**: "{element["textContent"][:100]}"')

    if event.coordinates:
        lines.append(f"- **Position**: ({event.coordinates.get('x')}, {event.coordinates.get('y')})")
    if event.value:
        lines.append(f'- **Value**: "{event.value}"')

    if event.is_coalesced:
        lines.append(f"- **Input Details**: {event.edit_count} edits over {round((event.duration or 0) / 1000)}s")
        if event.initial_value and event.final_value:
            lines.append(f'- **Change**: "{event.initial_value}" → "{event.final_value}"')
        flags = [name for name, on in (("backspace", event.had_backspace), ("pause", event.had_pause)) if on]
        if flags:
            lines.append(f"- **Editing**: had {' and '.join(flags)}")

    if event.correlated_requests:
        lines += ["", "**Correlated Network Requests:**", ""]
        for request in event.correlated_requests:
            lines += [
                f"- **{request.method}** {request.url.split('/')[-1]}",
                f"  - Confidence: {round(request.correlation.confidence)}%",
                f"  - Time difference: {request.correlation.time_difference}ms",
                f"  - Pattern: {request.correlation.pattern} ({request.correlation.causation_direction})",
            ]

    lines += ["", "---", ""]
    return lines


def generate_markdown(session: Session) -> str:
    """Render the full report: overview, OData usage, timeline, requests and summary."""
    odata = analyze_odata_operations(session.network_requests)
    summary = sequence_summary(session)
    duration = round((session.duration or 0) / 1000)

    lines = [f"# {report_title(session)}", "", "## Session Overview", ""]
    lines += [
        f"- **Session ID**: {session.session_id}",
        f"- **Session Name**: {session.metadata.session_name or 'Unknown'}",
        f"- **Application URL**: {session.metadata.application_url or 'Unknown'}",
        f"- **Started**: {_iso(session.start_time)}",
    ]
    if session.end_time is not None:
        lines.append(f"- **Ended**: {_iso(session.end_time)}")
    lines += [
        f"- **Duration**: {duration} seconds",
        f"- **Total Events**: {len(session.events)}",
        f"- **Network Requests**: {len(session.network_requests)}",
        "",
    ]

    if odata["entities"] or odata["operations"]:
        lines += ["## OData Analysis", ""]
        if odata["entities"]:
            lines += ["### Entities Accessed", ""]
            lines += [f"- **{e['name']}**: {', '.join(e['operations'])}" for e in odata["entities"]]
            lines.append("")
        if odata["operations"]:
            lines += ["### Operations Performed", ""]
            lines += [f"- **{op['type']}**: {op['description']}" for op in odata["operations"]]
            lines.append("")

    lines += ["## Events Timeline", ""]
    if session.events:
        for index, event in enumerate(session.events, start=1):
            lines += _event_section(index, event, session)
    else:
        lines += ["No events recorded.", ""]

    if session.network_requests:
        lines += ["## Network Requests", ""]
        for index, request in enumerate(session.network_requests, start=1):
            lines += [
                f"### Request {index}: {request.method} {request.type}",
                "",
                f"- **URL**: {request.url}",
                f"- **Method**: {request.method}",
                f"- **Type**: {request.type}",
                f"- **Status**: {request.status_code or 'Unknown'}",
                f"- **Duration**: {request.duration if request.duration is not None else 'Unknown'}ms",
            ]
            if isinstance(request.request_body, str) and request.request_body:
                lines += ["", "**Request Body:**", "```", request.request_body[:BODY_PREVIEW_CHARS], "```"]
            lines.append("")

    if summary["interactions"]:
        lines += [
            "## Session Summary",
            "",
            "### Key Interactions",
            "",
            f"- **Actors**: {', '.join(summary['actors'])}",
            f"- **Entities**: {', '.join(summary['entities']) or 'None detected'}",
            f"- **OData Operations**: {len(summary['odata_operations'])}",
            "",
        ]
        if summary["odata_operations"]:
            lines += ["### OData Operations Details", ""]
            for index, op in enumerate(summary["odata_operations"], start=1):
                lines.append(
                    f"{index}. **Event {op['event_id']}**: {op['operation']} on {op['entity']} "
                    f"({op['confidence']}% confidence)"
                )
            lines.append("")

    return "\n".join(lines)
