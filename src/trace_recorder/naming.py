"""Session display-name inference and export filename slugs."""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from trace_recorder.models.session_state import Session, SessionMetadata, TraceEvent

logger = logging.getLogger(__name__)

KNOWN_APPS = {
    "DetectionMethod-manageDetectionMethod": "Manage Detection Methods",
    "DetectionMethod-manage": "Manage Detection Methods",
    "ComplianceAlert-manage": "Manage Alerts",
    "AlertManagement-manageAlerts": "Manage Alerts",
    "Shell-home": "Fiori Launchpad Home",
    "UserManagement-maintain": "User Management",
    "Analytics-reporting": "Analytics & Reporting",
    "WorkflowInbox-displayInbox": "Workflow Inbox",
    "BusinessPartner-manage": "Business Partner Management",
}

# (url marker, slug) checked when the session name gives nothing better
URL_SLUGS = (
    ("ComplianceAlert-manage", "manage-alerts"),
    ("AlertManagement-manage", "manage-alerts"),
    ("DetectionMethod-manage", "manage-detection-methods"),
    ("Shell-home", "launchpad-home"),
)

HASH_PATTERN = re.compile(r"#(\w+)-(\w+)")
COMPONENT_ID_PATTERN = re.compile(r"application-([^-]+)-([^-]+)")
TILE_CLASSES = ("sapUshellTile", "sapMTile")
MAX_TITLE_LENGTH = 50
UNKNOWN_SLUG = "unknown"


def _split_camel(value: str) -> str:
    return re.sub(r"([A-Z])", r" \1", value).strip()


def clean_name_for_filename(name: str) -> str:
    """Lowercase, alphanumeric, at most three hyphen-joined words."""
    lowered = name.lower()
    if "manage" in lowered and "detection" in lowered and "method" in lowered:
        return "manage-detection-methods"
    if "manage" in lowered and "alert" in lowered:
        return "manage-alerts"
    words = re.sub(r"[^a-z0-9\s]", " ", lowered).split()
    return "-".join(words[:3])


def name_from_url(url: str | None) -> str | None:
    """Readable application name from a launchpad hash such as ``#Object-action``."""
    if not url:
        return None
    match = HASH_PATTERN.search(url)
    if not match:
        return None

    namespace, action = match.groups()
    known = KNOWN_APPS.get(f"{namespace}-{action}")
    if known:
        return known

    readable = _split_camel(action)
    return readable[:1].upper() + readable[1:]


def format_component_id(component_id: str) -> str:
    return re.sub(r"^manage", "Manage", _split_camel(component_id), flags=re.IGNORECASE)


def format_semantics(semantics: dict[str, Any]) -> str | None:
    app_type = semantics.get("appType")
    if not app_type or app_type == "unknown":
        return None
    if app_type == "manage-alerts":
        return "Manage Alerts"
    if app_type == "manage-detection-methods":
        return "Manage Detection Methods"
    if semantics.get("businessObject"):
        return f"Manage {semantics['businessObject']}"
    return app_type.replace("-", " ").title()


def app_info_from_context(context: dict[str, Any] | None) -> dict[str, Any] | None:
    """Application identity from framework context: AppInfo model, then component id, then global info."""
    if not context:
        return None

    global_context = context.get("globalUI5Context") or {}
    for model in global_context.get("models") or []:
        if model.get("name") == "AppInfo" and model.get("data"):
            data = model["data"]

            def text(key: str) -> str | None:
                return (data.get(key) or {}).get("text")

            title = text("appTitle") or "Unknown App"
            title = re.sub(r"\s+Management$", "", re.sub(r"^Manage\s+", "", title, flags=re.I), flags=re.I)
            return {
                "app_id": text("appId"),
                "app_title": text("appTitle"),
                "technical_component_id": text("technicalAppComponentId"),
                "session_name": clean_name_for_filename(title.strip()),
                "source": "AppInfo-model",
            }

    control_id = (context.get("elementUI5Info") or {}).get("controlId") or context.get("controlId")
    if control_id:
        match = COMPONENT_ID_PATTERN.search(control_id)
        if match:
            name = format_component_id(match.group(2))
            return {"app_id": match.group(1), "app_title": name, "session_name": name, "source": "component-id"}

    app_info = global_context.get("appInfo")
    if app_info:
        title = app_info.get("appTitle") or app_info.get("technicalComponentId") or "Unknown App"
        return {
            "app_id": app_info.get("appId"),
            "app_title": app_info.get("appTitle"),
            "technical_component_id": app_info.get("technicalComponentId"),
            "session_name": clean_name_for_filename(title),
            "source": "global-appInfo",
        }

    return None


def name_from_element(element: dict[str, Any] | None) -> str | None:
    """Title of a clicked launchpad tile."""
    if not element:
        return None
    class_name = element.get("className") or ""
    if not any(cls in class_name for cls in TILE_CLASSES):
        return None
    text = (element.get("tileTitle") or element.get("textContent") or "").strip()
    if text and len(text) < 100:
        return text
    return None


def extract_meaningful_name(event: TraceEvent) -> tuple[str | None, dict[str, Any] | None]:
    """Best display name an event offers, with any application info found."""
    app_info = app_info_from_context(event.framework_context)
    if app_info:
        return app_info["session_name"], app_info

    url_name = name_from_url(event.page_url)
    if url_name and "Launchpad" not in url_name:
        return url_name, None

    semantics = (event.framework_context or {}).get("appSemantics")
    if semantics:
        name = format_semantics(semantics)
        if name:
            return name, None

    title = event.page_title
    if title and "Launchpad" not in title and "Home" not in title:
        return title[:MAX_TITLE_LENGTH], None

    if event.type == "click":
        tile = name_from_element(event.element)
        if tile:
            return tile, None

    return None, None


def is_default_name(metadata: SessionMetadata) -> bool:
    name = metadata.session_name or ""
    return "Launchpad" in name or name.startswith("Session ") or name == metadata.original_session_name


def default_session_name(start_time: int) -> str:
    started = datetime.fromtimestamp(start_time / 1000, tz=timezone.utc)
    return f"Session {started.strftime('%Y-%m-%d %H:%M:%S')}"


def session_slug(session: Session) -> str:
    """Filename slug: app semantics, keyword matches, cleaned name, then ``unknown``."""
    metadata = session.metadata

    if metadata.app_semantics:
        name = format_semantics(metadata.app_semantics)
        if name:
            return clean_name_for_filename(name)

    name = metadata.session_name or ""
    lowered = name.lower()
    url = metadata.application_url or ""

    if "manage" in lowered and "detection" in lowered:
        return "manage-detection-methods"
    if "manage" in lowered and "alert" in lowered:
        return "manage-alerts"
    if "launchpad" in lowered or "home" in lowered:
        return "launchpad-home"
    for marker, slug in URL_SLUGS:
        if marker in url:
            return slug

    if name and not name.startswith("Session "):
        cleaned = clean_name_for_filename(name)
        if cleaned:
            return cleaned

    return UNKNOWN_SLUG


def semantic_basename(session: Session, prefix: str = "trace") -> str:
    started = datetime.fromtimestamp(session.start_time / 1000, tz=timezone.utc)
    return f"{prefix}-{started.strftime('%Y%m%dT%H%M%SZ')}-{session_slug(session)}"


def semantic_filename(session: Session, extension: str, prefix: str = "trace") -> str:
    """``<prefix>-<ISO 8601 start>-<slug>.<extension>``."""
    return f"{semantic_basename(session, prefix)}.{extension}"
