"""Screenshot identity, retention and the image-capture contract."""

import base64
import io
import logging
import re
from typing import Any, Protocol

from PIL import Image
from pydantic import BaseModel

from trace_recorder.config import ScreenshotConfig
from trace_recorder.models.session_state import ScreenshotRef

logger = logging.getLogger(__name__)

BUTTON_KEYWORDS = ("save", "cancel", "delete", "edit", "create", "go", "search", "assign")
INPUT_KEYWORDS = ("name", "email", "search", "filter", "amount", "date")


class ImageCapture(Protocol):
    """Captures the visible view of an owner.

    Returns PNG bytes or a ``data:image/png;base64,...`` URL; raises
    :class:`~trace_recorder.errors.CaptureError` (or any exception) on failure.
    """

    async def capture(self, owner: str, element_info: dict[str, Any] | None = None) -> bytes | str: ...


class Screenshot(BaseModel):
    """Captured image tied to an event."""

    id: str
    owner: str
    timestamp: int
    session_id: str | None = None
    data: bytes
    event_type: str | None = None
    event_id: str | None = None
    element_info: dict[str, Any] | None = None
    width: int | None = None
    height: int | None = None
    page_url: str | None = None

    @property
    def filename(self) -> str:
        return f"{self.id}.png"

    def to_ref(self) -> ScreenshotRef:
        return ScreenshotRef(id=self.id, filename=self.filename, timestamp=self.timestamp, event_type=self.event_type)


def _slug(value: str | None) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")


def element_semantics(element: dict[str, Any] | None) -> str | None:
    """Short semantic label for an element, e.g. ``button-save`` or ``input-date``."""
    if not element:
        return None

    tag = element.get("tagName") or ""
    class_name = element.get("className") or ""
    if not isinstance(class_name, str):
        class_name = ""

    if tag == "BUTTON" or "Btn" in class_name or "Button" in class_name:
        text = (element.get("textContent") or "").strip().lower()
        if not text:
            return "button"
        for keyword in BUTTON_KEYWORDS:
            if keyword in text:
                return f"button-{keyword}"
        return f"button-{re.sub(r'[^a-z0-9]', '', text)[:10]}"

    if tag == "INPUT":
        element_id = (element.get("id") or "").lower()
        if not element_id:
            return "input"
        for keyword in INPUT_KEYWORDS:
            if keyword in element_id:
                return f"input-{keyword}"
        return f"input-{re.sub(r'[^a-z0-9]', '', element_id)[:10]}"

    if tag == "A" or "Link" in class_name:
        return "link"
    if tag in ("TR", "TD"):
        return "table-row"
    if "sapUshellTile" in class_name or "sapMTile" in class_name:
        return "tile"
    if "sapMListItem" in class_name or tag == "LI":
        return "list-item"
    return None


def generate_screenshot_id(
    event_type: str | None,
    event_id: str | None = None,
    timestamp: int | None = None,
    app_context: str | None = None,
    element: dict[str, Any] | None = None,
) -> str:
    """``<event id or timestamp>-<kind>-<app context>-<element>``, skipping empty parts."""
    kind = re.sub(r"[^a-z0-9]", "", (event_type or "event").lower())
    parts = [
        event_id or (str(timestamp) if timestamp is not None else None),
        kind,
        _slug(app_context),
        element_semantics(element),
    ]
    return "-".join(p for p in parts if p)


def decode_image(payload: bytes | str) -> bytes:
    """Raw image bytes from bytes or a base64 data URL."""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if payload.startswith("data:"):
        payload = payload.split(",", 1)[1]
    return base64.b64decode(payload)


def image_size(data: bytes) -> tuple[int | None, int | None]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.width, image.height
    except Exception:
        logger.debug("Could not read image dimensions", exc_info=True)
        return None, None


class ScreenshotRegistry:
    """In-memory screenshot store, oldest by timestamp evicted first.

    The bound applies per owning session: a new session on the same owner
    starts with its own budget and never evicts the previous session's images.
    """

    def __init__(self, config: ScreenshotConfig | None = None):
        self.config = config or ScreenshotConfig()
        self._screenshots: dict[str, Screenshot] = {}

    def __len__(self) -> int:
        return len(self._screenshots)

    def __contains__(self, screenshot_id: str) -> bool:
        return screenshot_id in self._screenshots

    def should_capture(self, event_type: str) -> bool:
        return self.config.enabled and event_type in self.config.event_types

    def unique_id(self, base_id: str) -> str:
        if base_id not in self._screenshots:
            return base_id
        n = 2
        while f"{base_id}-{n}" in self._screenshots:
            n += 1
        return f"{base_id}-{n}"

    def register(
        self,
        owner: str,
        payload: bytes | str,
        timestamp: int,
        event_type: str | None = None,
        event_id: str | None = None,
        app_context: str | None = None,
        element_info: dict[str, Any] | None = None,
        page_url: str | None = None,
        session_id: str | None = None,
    ) -> Screenshot:
        data = decode_image(payload)
        width, height = image_size(data)
        base_id = generate_screenshot_id(event_type, event_id, timestamp, app_context, element_info)

        screenshot = Screenshot(
            id=self.unique_id(base_id),
            owner=owner,
            timestamp=timestamp,
            session_id=session_id,
            data=data,
            event_type=event_type,
            event_id=event_id,
            element_info=element_info,
            width=width,
            height=height,
            page_url=page_url,
        )
        self._screenshots[screenshot.id] = screenshot
        self.evict(owner, session_id)
        return screenshot

    def evict(self, owner: str, session_id: str | None = None) -> list[str]:
        owned = sorted(
            (s for s in self.for_owner(owner) if s.session_id == session_id),
            key=lambda s: s.timestamp,
        )
        excess = len(owned) - self.config.max_per_owner
        evicted = [s.id for s in owned[:excess]] if excess > 0 else []
        for screenshot_id in evicted:
            del self._screenshots[screenshot_id]
        if evicted:
            logger.debug("Evicted %d old screenshots for %s", len(evicted), owner)
        return evicted

    def get(self, screenshot_id: str) -> Screenshot | None:
        return self._screenshots.get(screenshot_id)

    def for_owner(self, owner: str) -> list[Screenshot]:
        return [s for s in self._screenshots.values() if s.owner == owner]

    def for_session(self, session_id: str) -> list[Screenshot]:
        return [s for s in self._screenshots.values() if s.session_id == session_id]

    def clear(self, owner: str | None = None) -> None:
        if owner is None:
            self._screenshots.clear()
        else:
            for screenshot in self.for_owner(owner):
                del self._screenshots[screenshot.id]
