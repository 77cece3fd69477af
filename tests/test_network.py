"""Tests for request relevance, classification and snapshot cleaning."""

import pytest

from trace_recorder.config import CoalescingConfig, CorrelationConfig, StorageConfig
from trace_recorder.models.network import Header, NetworkRequest
from trace_recorder.models.session_state import Session, TraceEvent
from trace_recorder.network import (
    TRUNCATION_MARKER,
    RequestTracker,
    analyze_odata_request,
    classify_request_type,
    clean_body,
    clean_event,
    clean_headers,
    clean_session,
    extract_request_body,
    extract_service_root,
    is_relevant_request,
    normalize_headers,
    unwrap_batch_request,
)

SERVICE = "https://host/sap/opu/odata/sap/ALERT_SRV"

BATCH_BODY = """--batch_123
Content-Type: multipart/mixed; boundary=changeset_1

--changeset_1
Content-Type: application/http

MERGE Alerts('1') HTTP/1.1
Content-Type: application/json

{"Status": "Closed"}
--changeset_1--
--batch_123
Content-Type: application/http

GET Alerts?$filter=Status%20eq%20'Open' HTTP/1.1
Accept: application/json

--batch_123--
"""


class TestRelevance:
    @pytest.mark.parametrize(
        "url,method",
        [
            (f"{SERVICE}/Alerts", "GET"),
            ("https://host/app/main.js", "POST"),
            ("https://host/oauth/token", "GET"),
            ("https://host/api/items", "GET"),
            ("https://host/sap/bc/ui2/start_up", "GET"),
        ],
    )
    def test_relevant(self, url, method):
        assert is_relevant_request(url, method) is True

    @pytest.mark.parametrize(
        "url",
        [
            "https://host/resources/sap-ui-core.js",
            "https://host/static/logo.png",
            "https://host/favicon.ico",
            "https://host/index.html",
        ],
    )
    def test_irrelevant(self, url):
        assert is_relevant_request(url, "GET") is False

    def test_static_filtering_can_be_disabled(self):
        assert is_relevant_request("https://host/sap/resources/app.js", "GET", filter_static_assets=False) is True


class TestClassification:
    @pytest.mark.parametrize(
        "url,method,expected",
        [
            (f"{SERVICE}/$batch", "POST", "odata-batch"),
            (f"{SERVICE}/$metadata", "GET", "odata-metadata"),
            (f"{SERVICE}/Alerts?$filter=x", "GET", "odata-filter"),
            (f"{SERVICE}/Alerts", "GET", "odata"),
            ("https://host/csrf", "GET", "csrf-token"),
            ("https://host/sap/bc/ui2/start_up", "GET", "sap-get"),
            ("https://host/api/items", "POST", "webapp-post"),
        ],
    )
    def test_classify(self, url, method, expected):
        assert classify_request_type(url, method) == expected

    def test_service_root(self):
        assert extract_service_root(f"{SERVICE}/Alerts?$top=5") == SERVICE

    def test_analyze_entity_read(self):
        analysis = analyze_odata_request(f"{SERVICE}/Alerts('1')", "GET")
        assert analysis.entity_set == "Alerts"
        assert analysis.request_type == "entity-read"
        assert analysis.service_root == SERVICE

    def test_analyze_filter_query(self):
        analysis = analyze_odata_request(f"{SERVICE}/Alerts?$filter=Status eq 'Open'&$top=10", "GET")
        assert analysis.request_type == "filter-query"
        assert analysis.query_params == {"$filter": "Status eq 'Open'", "$top": "10"}

    def test_analyze_batch(self):
        analysis = analyze_odata_request(f"{SERVICE}/$batch", "POST")
        assert analysis.is_batch is True
        assert analysis.request_type == "batch"


class TestBatchUnwrapping:
    def test_unwraps_operations(self):
        operations = unwrap_batch_request(BATCH_BODY)
        assert [(op.method, op.type) for op in operations] == [("MERGE", "update"), ("GET", "filter")]
        assert operations[0].url == "Alerts('1')"
        assert operations[0].headers["Content-Type"] == "application/json"
        assert '"Status": "Closed"' in operations[0].body

    def test_non_string_body(self):
        assert unwrap_batch_request({"a": 1}) == []
        assert unwrap_batch_request(None) == []


class TestBodiesAndHeaders:
    def test_extract_json_body(self):
        assert extract_request_body(b'{"a": 1}') == {"a": 1}
        assert extract_request_body("plain") == "plain"
        assert extract_request_body(b"") is None

    def test_undecodable_body_degrades_to_none(self):
        assert extract_request_body(b"\xff\xfe\xfa") is None

    def test_normalize_headers(self):
        assert normalize_headers({"Accept": "*/*"}) == [Header(name="Accept", value="*/*")]
        assert normalize_headers([{"name": "X", "value": 1}, {"value": "no name"}]) == [Header(name="X", value="1")]

    def test_clean_headers_drops_authorization(self):
        headers = [Header(name="Authorization", value="secret"), Header(name="Content-Type", value="json")]
        cleaned = clean_headers(headers, ["authorization", "content-type"])
        assert [h.name for h in cleaned] == ["Content-Type"]

    def test_clean_body_truncates(self):
        assert clean_body("x" * 20, limit=10) == "x" * 10 + TRUNCATION_MARKER
        assert clean_body("short", limit=10) == "short"
        assert clean_body({"a": "b"}, limit=100) == {"a": "b"}
        assert clean_body({"a": "b" * 50}, limit=10).endswith(TRUNCATION_MARKER)

    def test_clean_event_caps_text_and_intermediates(self):
        event = TraceEvent(
            event_id="0001",
            timestamp=0,
            type="input",
            element={"textContent": "t" * 300},
            intermediate_values=["v"] * 50,
        )
        cleaned = clean_event(event, CoalescingConfig())
        assert len(cleaned.element["textContent"]) == 200
        assert cleaned.intermediate_values is None
        # Live event untouched
        assert len(event.intermediate_values) == 50

    def test_clean_session_is_a_copy(self):
        session = Session(session_id="s", owner="o", start_time=0)
        session.network_requests.append(
            NetworkRequest(
                request_id="r",
                owner="o",
                url="https://x",
                timestamp=0,
                request_headers=[Header(name="Authorization", value="secret")],
            )
        )
        snapshot = clean_session(session, StorageConfig())
        assert snapshot.network_requests[0].request_headers == []
        assert session.network_requests[0].request_headers != []


class FakeClock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


class TestRequestTracker:
    def make(self, request_id, timestamp, owner="tab-1", end_time=None):
        return NetworkRequest(request_id=request_id, owner=owner, url="https://x", timestamp=timestamp, end_time=end_time)

    def test_candidates_filtered_by_owner_and_window(self):
        clock = FakeClock(20_000)
        tracker = RequestTracker(CorrelationConfig(), clock)
        tracker.add(self.make("a", 15_000))
        tracker.add(self.make("b", 15_000, owner="tab-2"))
        tracker.add(self.make("c", 1_000))
        assert [r.request_id for r in tracker.candidates("tab-1", 14_000)] == ["a"]

    def test_prune_uses_completion_time(self):
        clock = FakeClock(0)
        tracker = RequestTracker(CorrelationConfig(request_retention_ms=1000), clock)
        tracker.add(self.make("done", 0, end_time=500))
        tracker.add(self.make("open", 0))
        clock.now = 1200
        assert "done" in tracker
        assert "open" not in tracker
        clock.now = 1600
        assert len(tracker) == 0

    def test_clear_owner(self):
        tracker = RequestTracker(CorrelationConfig(), FakeClock(0))
        tracker.add(self.make("a", 0))
        tracker.add(self.make("b", 0, owner="tab-2"))
        tracker.clear("tab-1")
        assert [r.request_id for r in tracker.for_owner("tab-2")] == ["b"]
        assert tracker.for_owner("tab-1") == []
