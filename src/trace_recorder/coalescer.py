"""Input event coalescing and event filtering.

Keystroke-level ``input`` events on one field are folded into a single
logical edit while each new value is a progressive edit of the previous one
and arrives within the rolling time threshold of the last edit.
"""

import logging
from typing import Any

from trace_recorder.config import CoalescingConfig
from trace_recorder.models.session_state import TraceEvent
from trace_recorder.similarity import string_similarity

logger = logging.getLogger(__name__)

CRITICAL_EVENT_TYPES = {"navigation", "page_load", "form_submit", "submit", "click"}
SUMMARY_EVENT_TYPES = {"navigation", "page_load", "form_submit"}
DEFAULT_EVENT_TYPES = {"navigation", "page_load", "form_submit", "click", "field_edit"}
KEY_EVENT_TYPES = {"keydown", "keyboard"}
MEANINGLESS_KEYS = {"shift", "control", "alt", "meta", "capslock"}
SHORTCUT_KEYS = {"enter", "escape", "tab", "f1", "f2", "f3", "f4", "f5"}
IMPORTANT_FIELD_TYPES = {"email", "password", "search", "tel", "url"}
IMPORTANT_FIELD_NAMES = ("username", "password", "email", "search", "query", "login")

# editing_start/editing_end pairs shorter than this with no change are not consolidated
EDIT_CONSOLIDATION_MIN_MS = 1000


def element_identity(element: dict[str, Any] | None) -> str | None:
    """Stable identity of an element descriptor: id, then selector, then xpath."""
    if not element:
        return None
    return element.get("id") or element.get("selector") or element.get("xpath") or None


def detect_backspace(values: list[str]) -> bool:
    """True if any value is shorter than its predecessor."""
    return any(len(values[i]) < len(values[i - 1]) for i in range(1, len(values)))


class EventCoalescer:
    """Decides merge-or-append for each new event against a session's event list."""

    def __init__(self, config: CoalescingConfig | None = None):
        self.config = config or CoalescingConfig()

    # Progressive edit predicate

    def is_progressive_input(self, old_value: str, new_value: str) -> bool:
        """Whether ``new_value`` is an append, truncation or small edit of ``old_value``."""
        length_diff = len(new_value) - len(old_value)

        if length_diff > 0 and new_value.startswith(old_value):
            return True
        if length_diff < 0 and old_value.startswith(new_value):
            return True
        if abs(length_diff) <= self.config.max_length_delta:
            return string_similarity(old_value, new_value) > self.config.similarity_threshold
        return False

    def can_coalesce(self, last_event: TraceEvent | None, new_event: TraceEvent) -> bool:
        if last_event is None or last_event.type != "input" or new_event.type != "input":
            return False
        if element_identity(last_event.element) != element_identity(new_event.element):
            return False

        last_edit = last_event.end_time if last_event.end_time is not None else last_event.timestamp
        if new_event.timestamp - last_edit > self.config.time_threshold_ms:
            return False

        return self.is_progressive_input(last_event.value or "", new_event.value or "")

    def coalesce(self, last_event: TraceEvent, new_event: TraceEvent) -> TraceEvent:
        """Fold ``new_event`` into ``last_event`` in place."""
        last_edit = last_event.end_time if last_event.end_time is not None else last_event.timestamp
        gap = new_event.timestamp - last_edit
        new_value = new_event.value or ""

        if last_event.intermediate_values is None:
            first = last_event.initial_value if last_event.initial_value is not None else last_event.value
            last_event.intermediate_values = [first or ""]
        last_event.intermediate_values.append(new_value)

        if last_event.initial_value is None:
            last_event.initial_value = last_event.intermediate_values[0]

        last_event.end_time = new_event.timestamp
        last_event.duration = last_event.end_time - last_event.timestamp
        last_event.value = new_value
        last_event.final_value = new_value
        last_event.edit_count = (last_event.edit_count or 1) + 1
        last_event.is_coalesced = True
        last_event.had_backspace = detect_backspace(last_event.intermediate_values)
        last_event.had_pause = bool(last_event.had_pause) or gap > self.config.pause_threshold_ms

        logger.debug(
            'Coalesced "%s" -> "%s" (%d edits)',
            last_event.initial_value,
            last_event.final_value,
            last_event.edit_count,
        )
        return last_event

    # Filters

    def is_redundant(self, event: TraceEvent, events: list[TraceEvent]) -> bool:
        """Noise that should never reach the trace."""
        if not self.config.filter_redundant:
            return False

        identity = element_identity(event.element)

        if event.type == "input" and not (event.value or "").strip():
            previous = next(
                (e for e in reversed(events) if e.type == "input" and element_identity(e.element) == identity),
                None,
            )
            # Clearing a field that had content is significant
            return not (previous and (previous.value or "").strip())

        if event.type == "editing_start":
            for start in events:
                if start.type != "editing_start" or element_identity(start.element) != identity:
                    continue
                closed = any(
                    end.type == "editing_end"
                    and element_identity(end.element) == identity
                    and end.timestamp > start.timestamp
                    for end in events
                )
                if not closed:
                    return True

        if event.type in KEY_EVENT_TYPES and (event.key or "").lower() in MEANINGLESS_KEYS:
            return True

        if event.type == "click":
            for previous in events:
                if (
                    previous.type == "click"
                    and element_identity(previous.element) == identity
                    and event.timestamp - previous.timestamp < self.config.rapid_click_ms
                ):
                    logger.debug("Filtering rapid repeated click on %s", identity)
                    return True

        return False

    def include_by_verbosity(self, event: TraceEvent) -> bool:
        if event.type in CRITICAL_EVENT_TYPES:
            return True

        verbosity = self.config.verbosity
        if verbosity == "verbose":
            return True
        if verbosity == "summary":
            return self._is_summary_event(event)
        return self._is_default_event(event)

    def _is_summary_event(self, event: TraceEvent) -> bool:
        if event.type in SUMMARY_EVENT_TYPES:
            return True
        if event.type == "click":
            tag = ((event.element or {}).get("tagName") or "").lower()
            return tag in {"button", "a", "input"}
        if event.type == "input":
            return len(event.value or "") > 5
        if event.type == "field_edit":
            return event.has_changed is True
        return False

    def _is_default_event(self, event: TraceEvent) -> bool:
        if event.type in DEFAULT_EVENT_TYPES:
            return True
        if event.type in ("editing_start", "editing_end"):
            return False
        if event.type == "input":
            value = event.value or ""
            if not value.strip():
                return False
            if len(value) < 2:
                return _is_important_field(event.element)
            return True
        if event.type in KEY_EVENT_TYPES:
            modifiers = event.modifiers or {}
            has_modifier = any(modifiers.get(k) for k in ("ctrlKey", "altKey", "metaKey"))
            return (event.key or "").lower() in SHORTCUT_KEYS or has_modifier
        return False

    # Editing consolidation

    def consolidate_editing(self, events: list[TraceEvent], end_event: TraceEvent) -> TraceEvent | None:
        """Replace the matching ``editing_start`` with a ``field_edit`` event.

        Returns the consolidated event, or None when there is nothing to
        consolidate (no start, or an unchanged edit shorter than a second).
        """
        identity = element_identity(end_event.element)
        index = next(
            (
                i
                for i in range(len(events) - 1, -1, -1)
                if events[i].type == "editing_start" and element_identity(events[i].element) == identity
            ),
            None,
        )
        if index is None:
            return None

        start = events[index]
        duration = end_event.timestamp - start.timestamp
        initial_value = start.initial_value or ""
        final_value = end_event.final_value or ""
        has_changed = initial_value != final_value

        if not has_changed and duration < EDIT_CONSOLIDATION_MIN_MS:
            return None

        consolidated = TraceEvent(
            event_id=start.event_id,
            timestamp=start.timestamp,
            type="field_edit",
            element=start.element,
            framework_context=end_event.framework_context or start.framework_context,
            page_url=start.page_url,
            page_title=start.page_title,
            initial_value=initial_value,
            final_value=final_value,
            value=final_value,
            duration=duration,
            end_time=end_event.timestamp,
            has_changed=has_changed,
            screenshot=end_event.screenshot or start.screenshot,
            correlated_requests=start.correlated_requests,
        )
        events[index] = consolidated
        logger.debug("Consolidated editing events for element %s", identity)
        return consolidated

    # Entry point

    def add_event(self, events: list[TraceEvent], new_event: TraceEvent) -> tuple[TraceEvent, bool]:
        """Merge ``new_event`` into ``events`` or append it.

        Returns the event that now carries the data and whether a merge
        (coalescing or consolidation) happened.
        """
        if new_event.type == "input" and new_event.initial_value is None:
            new_event.initial_value = new_event.value

        if not self.config.enabled:
            events.append(new_event)
            return new_event, False

        if new_event.type == "editing_end":
            consolidated = self.consolidate_editing(events, new_event)
            if consolidated is not None:
                return consolidated, True

        last_event = events[-1] if events else None
        if self.can_coalesce(last_event, new_event):
            return self.coalesce(last_event, new_event), True

        events.append(new_event)
        return new_event, False


def _is_important_field(element: dict[str, Any] | None) -> bool:
    if not element:
        return False
    field_type = (element.get("type") or "").lower()
    name = (element.get("name") or "").lower()
    element_id = (element.get("id") or "").lower()
    return (
        field_type in IMPORTANT_FIELD_TYPES
        or any(n in name for n in IMPORTANT_FIELD_NAMES)
        or any(n in element_id for n in IMPORTANT_FIELD_NAMES)
    )
