"""Tests for event/request correlation."""

import pytest

from trace_recorder.config import CorrelationConfig
from trace_recorder.correlation import (
    PATTERN_ASSIGNMENT_ACTION,
    PATTERN_DATA_RETRIEVAL,
    PATTERN_FILTER_EXECUTION,
    PATTERN_GENERIC,
    CorrelationEngine,
)
from trace_recorder.models.network import NetworkRequest
from trace_recorder.models.session_state import TraceEvent

BUTTON = {"tagName": "BUTTON", "id": "saveBtn", "textContent": "Save"}
DIV = {"tagName": "DIV", "id": "panel", "textContent": "Panel"}
ODATA_URL = "https://host/sap/opu/odata/sap/ALERT_SRV/Alerts"


@pytest.fixture
def engine():
    return CorrelationEngine(CorrelationConfig())


def click(timestamp=10_000, element=BUTTON, event_id="0001"):
    return TraceEvent(event_id=event_id, timestamp=timestamp, type="click", element=element)


def request(timestamp, request_id="r1", url=ODATA_URL, request_type="odata", body=None):
    return NetworkRequest(
        request_id=request_id,
        owner="tab-1",
        url=url,
        timestamp=timestamp,
        type=request_type,
        request_body=body,
    )


class TestScore:
    def test_button_odata_pattern_is_capped(self, engine):
        correlation = engine.score(click(), request(10_800))
        assert correlation.confidence == 95
        assert correlation.causation_direction == "after-click"
        assert correlation.time_difference == 800
        assert correlation.event_id == "0001"

    def test_generic_linear_decay(self, engine):
        correlation = engine.score(click(element=DIV), request(12_000, request_type="webapp-get"))
        assert correlation.confidence == 92
        assert correlation.pattern == PATTERN_GENERIC

    def test_pre_event_request_is_penalized(self, engine):
        correlation = engine.score(click(element=DIV), request(500))
        assert correlation.causation_direction == "before-click"
        assert correlation.time_difference == 9500
        assert correlation.confidence == pytest.approx(43.4)

    def test_outside_window(self, engine):
        assert engine.score(click(), request(20_001)) is None
        assert engine.score(click(), request(20_000)) is not None

    def test_pattern_requires_request_after_event(self, engine):
        assert engine.is_causation_pattern(click(), request(9000), -1000) is False

    def test_button_pattern_window(self, engine):
        assert engine.is_causation_pattern(click(), request(13_000), 3000) is True
        assert engine.is_causation_pattern(click(), request(13_001), 3001) is False

    def test_assign_pattern_matches_body(self, engine):
        event = click(element={"tagName": "SPAN", "textContent": "Assign to me"})
        req = request(11_000, request_type="sap-post", body="SetMeAsResponsiblePerson")
        correlation = engine.score(event, req)
        assert correlation.confidence == 95
        assert correlation.pattern == PATTERN_ASSIGNMENT_ACTION


class TestDetectPattern:
    def test_go_button(self, engine):
        event = click(element={"tagName": "BUTTON", "textContent": "Go"})
        assert engine.detect_pattern(event, request(0)) == PATTERN_FILTER_EXECUTION

    def test_batch_request(self, engine):
        assert engine.detect_pattern(click(element=DIV), request(0, request_type="odata-batch")) == PATTERN_DATA_RETRIEVAL


class TestCorrelate:
    def test_post_event_request_ranks_above_pre_event(self, engine):
        event = click(element=DIV)
        ranked = engine.correlate(event, [request(500, "before"), request(12_000, "after")])
        assert [r.request_id for r in ranked] == ["after", "before"]

    def test_near_ties_prefer_smaller_time_difference(self, engine):
        event = click(element=DIV)
        # 92 vs 96: within tie tolerance, nearer wins
        ranked = engine.correlate(event, [request(12_000, "far"), request(11_000, "near")])
        assert [r.request_id for r in ranked] == ["near", "far"]

    def test_clear_confidence_gap_wins(self, engine):
        event = click()
        candidates = [request(9500, "nearer", request_type="webapp-get"), request(12_000, "odata")]
        ranked = engine.correlate(event, candidates)
        assert [r.request_id for r in ranked] == ["odata", "nearer"]

    def test_out_of_window_candidates_are_dropped(self, engine):
        ranked = engine.correlate(click(), [request(50_000)])
        assert ranked == []


class TestMerge:
    def test_keeps_existing_entries(self, engine):
        event = click()
        event.correlated_requests = engine.correlate(event, [request(1000, "old")])
        merged = engine.merge(event, [request(10_800, "new")])
        assert [r.request_id for r in merged] == ["new", "old"]

    def test_rescores_known_request(self, engine):
        event = click()
        event.correlated_requests = engine.correlate(event, [request(10_800, "r1", request_type="webapp-get")])
        merged = engine.merge(event, [request(10_800, "r1")])
        assert len(merged) == 1
        assert merged[0].correlation.confidence == 95

    def test_out_of_window_request_not_added(self, engine):
        event = click()
        assert engine.merge(event, [request(50_000)]) == []


class TestBestMatch:
    def test_picks_highest_ranked_event(self, engine):
        events = [
            click(timestamp=1000, element=DIV, event_id="0001"),
            click(timestamp=9000, element=BUTTON, event_id="0002"),
        ]
        correlation = engine.best_match(request(10_000), events)
        assert correlation.event_id == "0002"

    def test_no_events_in_window(self, engine):
        assert engine.best_match(request(100_000), [click()]) is None
