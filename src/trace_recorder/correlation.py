"""Confidence-scored linking of interaction events to network requests."""

import logging
from collections.abc import Iterable
from functools import cmp_to_key
from typing import Any

from trace_recorder.config import CorrelationConfig
from trace_recorder.models.network import CorrelatedRequest, Correlation, NetworkRequest
from trace_recorder.models.session_state import TraceEvent

logger = logging.getLogger(__name__)

# Causation pattern windows, in ms after the event
BUTTON_ODATA_WINDOW_MS = 3000
GO_ODATA_WINDOW_MS = 5000
ASSIGN_ACTION_WINDOW_MS = 3000
LINK_ODATA_WINDOW_MS = 4000
FILTER_ODATA_WINDOW_MS = 4000

ASSIGN_ACTION_MARKER = "SetMeAsResponsiblePerson"

PATTERN_FILTER_EXECUTION = "filter-execution"
PATTERN_ASSIGNMENT_ACTION = "assignment-action"
PATTERN_NAVIGATION_ACTION = "navigation-action"
PATTERN_FILTER_SELECTION = "filter-selection"
PATTERN_DATA_RETRIEVAL = "data-retrieval"
PATTERN_GENERIC = "generic-interaction"


def _attr(element: dict[str, Any] | None, name: str) -> str:
    value = (element or {}).get(name)
    return value if isinstance(value, str) else ""


class CorrelationEngine:
    """Ranks candidate requests for an event.

    Confidence starts at ``100 - |dt| / window * 40``, gains ``pattern_boost``
    (capped at ``confidence_cap``) when a causation pattern matches, and is
    multiplied by ``pre_event_penalty`` when the request preceded the event.
    """

    def __init__(self, config: CorrelationConfig | None = None):
        self.config = config or CorrelationConfig()

    def is_causation_pattern(self, event: TraceEvent, request: NetworkRequest, time_diff: int) -> bool:
        if time_diff < 0:
            return False

        element = event.element
        tag = _attr(element, "tagName")
        element_id = _attr(element, "id")
        class_name = _attr(element, "className")
        text = _attr(element, "textContent")
        is_odata = "odata" in request.type

        if tag == "BUTTON" or "Btn" in class_name or "Button" in element_id or "Btn" in element_id:
            if time_diff <= BUTTON_ODATA_WINDOW_MS and is_odata:
                return True

        if "Go" in text or "btnGo" in element_id:
            if time_diff <= GO_ODATA_WINDOW_MS and is_odata:
                return True

        if "Assign" in text or "assign" in element_id or "Assign" in element_id:
            if time_diff <= ASSIGN_ACTION_WINDOW_MS and (
                ASSIGN_ACTION_MARKER in request.body_text() or ASSIGN_ACTION_MARKER in request.url
            ):
                return True

        if tag == "A" or "Link" in class_name:
            if time_diff <= LINK_ODATA_WINDOW_MS and is_odata:
                return True

        if "filter" in element_id or "Filter" in element_id or "Filter" in class_name:
            if time_diff <= FILTER_ODATA_WINDOW_MS and is_odata:
                return True

        return False

    def detect_pattern(self, event: TraceEvent, request: NetworkRequest) -> str:
        element = event.element
        text = _attr(element, "textContent")
        if "Go" in text:
            return PATTERN_FILTER_EXECUTION
        if "Assign" in text:
            return PATTERN_ASSIGNMENT_ACTION
        if _attr(element, "tagName") == "A":
            return PATTERN_NAVIGATION_ACTION
        if "filter" in _attr(element, "id"):
            return PATTERN_FILTER_SELECTION
        if "odata-batch" in request.type:
            return PATTERN_DATA_RETRIEVAL
        return PATTERN_GENERIC

    def score(self, event: TraceEvent, request: NetworkRequest) -> Correlation | None:
        """Correlation of one request with one event, or None outside the window."""
        time_diff = request.timestamp - event.timestamp
        distance = abs(time_diff)
        window = self.config.window_ms
        if distance > window:
            return None

        confidence = max(0.0, 100 - distance / window * 40)
        if self.is_causation_pattern(event, request, time_diff):
            confidence = min(self.config.confidence_cap, confidence + self.config.pattern_boost)
        if time_diff < 0:
            confidence *= self.config.pre_event_penalty

        return Correlation(
            confidence=round(confidence, 2),
            time_difference=distance,
            causation_direction="after-click" if time_diff >= 0 else "before-click",
            pattern=self.detect_pattern(event, request),
            event_id=event.event_id,
        )

    def _compare(self, a: CorrelatedRequest, b: CorrelatedRequest) -> int:
        if abs(a.correlation.confidence - b.correlation.confidence) < self.config.tie_tolerance:
            return a.correlation.time_difference - b.correlation.time_difference
        return -1 if a.correlation.confidence > b.correlation.confidence else 1

    def _entry(self, request: NetworkRequest, correlation: Correlation) -> CorrelatedRequest:
        return CorrelatedRequest(
            request_id=request.request_id,
            url=request.url,
            method=request.method,
            type=request.type,
            timestamp=request.timestamp,
            correlation=correlation,
        )

    def correlate(self, event: TraceEvent, candidates: Iterable[NetworkRequest]) -> list[CorrelatedRequest]:
        """All in-window candidates, best first."""
        correlated = []
        for request in candidates:
            correlation = self.score(event, request)
            if correlation is not None:
                correlated.append(self._entry(request, correlation))

        correlated.sort(key=cmp_to_key(self._compare))
        if correlated:
            logger.debug(
                "Event %s correlated with %d requests (best %.2f)",
                event.event_id,
                len(correlated),
                correlated[0].correlation.confidence,
            )
        return correlated

    def merge(self, event: TraceEvent, requests: Iterable[NetworkRequest]) -> list[CorrelatedRequest]:
        """The event's existing correlations with ``requests`` added or rescored, best first.

        Earlier entries are kept even when their request has since left the
        transient pool.
        """
        requests = list(requests)
        incoming = {r.request_id for r in requests}
        merged = [c for c in event.correlated_requests if c.request_id not in incoming]
        for request in requests:
            correlation = self.score(event, request)
            if correlation is not None:
                merged.append(self._entry(request, correlation))
        merged.sort(key=cmp_to_key(self._compare))
        return merged

    def best_match(self, request: NetworkRequest, events: Iterable[TraceEvent]) -> Correlation | None:
        """Highest-ranked event for a request, used when the request lands after its event."""
        best: Correlation | None = None
        for event in events:
            correlation = self.score(event, request)
            if correlation is None:
                continue
            if best is None or self._ranks_before(correlation, best):
                best = correlation
        return best

    def _ranks_before(self, a: Correlation, b: Correlation) -> bool:
        if abs(a.confidence - b.confidence) < self.config.tie_tolerance:
            return a.time_difference < b.time_difference
        return a.confidence > b.confidence
