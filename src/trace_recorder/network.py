"""Request relevance, classification, OData analysis and snapshot cleaning."""

import json
import logging
import re
import time
from collections.abc import Callable, Iterable
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from trace_recorder.config import CoalescingConfig, CorrelationConfig, StorageConfig
from trace_recorder.models.network import BatchOperation, Header, NetworkRequest, ODataAnalysis
from trace_recorder.models.session_state import Session, TraceEvent

logger = logging.getLogger(__name__)

DATA_MODIFYING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

ODATA_MARKERS = ("$metadata", "sap/opu/odata", "$batch", "$format=json", "/odata/")
SAP_MARKERS = ("/sap/", "sap-client=", ".sap.com", "sapsb", "sapui5")
AUTH_MARKERS = ("/csrf", "/token", "/auth", "/login", "/saml", "/oauth", "x-csrf-token", "SecurityToken")
WEBAPP_MARKERS = ("/api/", "/service/", "/data/", ".json", "?")

STATIC_EXTENSIONS = (
    ".js", ".css", ".map",
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp",
    ".woff", ".woff2", ".ttf", ".eot",
    ".mp4", ".mp3", ".avi", ".wav",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx",
    ".zip", ".tar", ".gz",
)  # fmt: skip
WEBAPP_STATIC_EXTENSIONS = (
    ".js", ".css", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".woff", ".woff2", ".ttf",
)  # fmt: skip
STATIC_PATTERNS = [
    re.compile(p)
    for p in (
        r"/resources/.*\.(js|css)",
        r"/static/",
        r"/assets/",
        r"/dist/",
        r"/build/",
        r"/node_modules/",
        r"/vendors?/",
        r"/libs?/",
        r"cache-buster",
        r"\.min\.(js|css)",
        r"jquery.*\.js",
        r"bootstrap.*\.(js|css)",
        r"font-awesome",
        r"favicon\.ico",
    )
]

ODATA_QUERY_OPTIONS = (
    "$filter", "$search", "$select", "$expand", "$orderby",
    "$top", "$skip", "$format", "$inlinecount", "$skiptoken",
)  # fmt: skip
SERVICE_ROOT_PATTERN = re.compile(r"(.*/sap/opu/odata/[^/]+/[^/;]+(?:;v=\d+)?)")
BATCH_REQUEST_LINE = re.compile(r"^(GET|POST|PUT|PATCH|DELETE|MERGE)\s+(\S+)")

TRUNCATION_MARKER = "...[truncated]"


# Relevance predicates


def is_odata_request(url: str) -> bool:
    return any(marker in url for marker in ODATA_MARKERS)


def is_sap_request(url: str) -> bool:
    return any(marker in url for marker in SAP_MARKERS)


def is_auth_request(url: str) -> bool:
    return any(marker in url for marker in AUTH_MARKERS)


def is_static_asset(url: str) -> bool:
    lowered = url.lower()
    if any(ext in lowered for ext in STATIC_EXTENSIONS):
        return True
    return any(pattern.search(url) for pattern in STATIC_PATTERNS)


def is_webapp_request(url: str) -> bool:
    if any(ext in url for ext in WEBAPP_STATIC_EXTENSIONS):
        return False
    return any(marker in url for marker in WEBAPP_MARKERS)


def is_relevant_request(url: str, method: str, filter_static_assets: bool = True) -> bool:
    """Whether a request belongs in a trace at all.

    OData, auth/token and data-modifying requests are always relevant; static
    assets are rejected when filtering is on; SAP and dynamic web-app requests
    are relevant otherwise.
    """
    if is_odata_request(url) or is_auth_request(url) or method.upper() in DATA_MODIFYING_METHODS:
        return True
    if filter_static_assets and is_static_asset(url):
        return False
    if is_sap_request(url):
        return True
    return is_webapp_request(url)


def classify_request_type(url: str, method: str) -> str:
    method = method.lower()
    if is_odata_request(url):
        for marker, kind in (
            ("$batch", "odata-batch"),
            ("$metadata", "odata-metadata"),
            ("$count", "odata-count"),
            ("$filter", "odata-filter"),
            ("$search", "odata-search"),
            ("$expand", "odata-expand"),
        ):
            if marker in url:
                return kind
        return "odata"

    if is_auth_request(url):
        if "/csrf" in url:
            return "csrf-token"
        if "/token" in url:
            return "auth-token"
        if "/auth" in url or "/login" in url:
            return "authentication"
        return "auth-request"

    if is_sap_request(url):
        return f"sap-{method}"
    if is_webapp_request(url):
        return f"webapp-{method}"
    return method


# OData analysis


def extract_service_root(url: str) -> str | None:
    match = SERVICE_ROOT_PATTERN.match(url.split("?")[0])
    return match.group(1) if match else None


def analyze_odata_request(url: str, method: str) -> ODataAnalysis:
    analysis = ODataAnalysis(
        is_batch="$batch" in url,
        is_metadata="$metadata" in url,
        is_count="$count" in url,
        service_root=extract_service_root(url),
    )

    parts = urlsplit(url)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    analysis.query_params = {k: params[k] for k in ODATA_QUERY_OPTIONS if k in params}

    if analysis.service_root:
        root_path = urlsplit(analysis.service_root).path
        remainder = parts.path[len(root_path) :]
        segments = [s for s in remainder.split("/") if s and not s.startswith("$")]
        if segments:
            analysis.entity_set = segments[0].split("(")[0]

    analysis.request_type = _odata_request_type(method.upper(), analysis)
    return analysis


def _odata_request_type(method: str, analysis: ODataAnalysis) -> str:
    if analysis.is_metadata:
        return "metadata"
    if analysis.is_batch:
        return "batch"
    if analysis.is_count:
        return "count"

    params = analysis.query_params
    if params.get("$filter"):
        return "filter-query"
    if params.get("$search"):
        return "search-query"
    if params.get("$expand"):
        return "expand-query"
    if params.get("$top") or params.get("$skip"):
        return "paging-query"
    if params.get("$orderby"):
        return "sort-query"

    if method == "GET":
        return "entity-read" if analysis.entity_set else "collection-read"
    if method == "POST":
        return "entity-create" if analysis.entity_set else "function-call"
    if method in ("PUT", "PATCH"):
        return "entity-update"
    if method == "DELETE":
        return "entity-delete"
    return "unknown"


def classify_batch_operation(method: str, url: str) -> str:
    for marker, kind in (("$metadata", "metadata"), ("$count", "count"), ("$filter", "filter"), ("$search", "search")):
        if marker in url:
            return kind
    return {
        "GET": "read",
        "POST": "create",
        "PUT": "update",
        "PATCH": "update",
        "MERGE": "update",
        "DELETE": "delete",
    }.get(method, "unknown")


def unwrap_batch_request(body: Any) -> list[BatchOperation]:
    """Split a multipart/mixed ``$batch`` body into its operations."""
    if not body or not isinstance(body, str):
        return []

    operations: list[BatchOperation] = []
    current: BatchOperation | None = None
    in_headers = False
    in_body = False

    for raw_line in body.split("\n"):
        line = raw_line.strip()

        if line.startswith("--batch_") or line.startswith("--changeset_"):
            if current is not None:
                operations.append(current)
            current = BatchOperation()
            in_headers = in_body = False
            continue

        match = BATCH_REQUEST_LINE.match(line)
        if match:
            if current is not None:
                current.method = match.group(1)
                current.url = match.group(2)
                current.type = classify_batch_operation(current.method, current.url)
                in_headers, in_body = True, False
            continue

        if in_headers and ":" in line:
            if current is not None:
                key, _, value = line.partition(":")
                current.headers[key.strip()] = value.strip()
            continue

        if in_headers and line == "":
            in_headers, in_body = False, True
            continue

        if in_body and line and current is not None:
            current.body = (current.body or "") + line + "\n"

    if current is not None:
        operations.append(current)

    return [op for op in operations if op.method and op.url]


# Body and header handling


def extract_request_body(body: Any) -> Any:
    """Decode a raw request body, parsing JSON where possible.

    Undecodable bodies degrade to None.
    """
    if body is None or body == b"" or body == "":
        return None

    if isinstance(body, (bytes, bytearray)):
        try:
            body = bytes(body).decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Request body is not valid UTF-8, dropping it")
            return None

    if isinstance(body, str):
        try:
            return json.loads(body)
        except ValueError:
            return body

    return body


def normalize_headers(headers: Any) -> list[Header]:
    """Accept a mapping or a list of ``{name, value}`` entries."""
    if not headers:
        return []
    if isinstance(headers, dict):
        return [Header(name=str(k), value=str(v)) for k, v in headers.items()]

    result = []
    for header in headers:
        if isinstance(header, Header):
            result.append(header)
        elif isinstance(header, dict) and header.get("name"):
            result.append(Header(name=str(header["name"]), value=str(header.get("value", ""))))
    return result


def clean_headers(headers: Iterable[Header], allow_list: Iterable[str]) -> list[Header]:
    allowed = {name.lower() for name in allow_list}
    return [h for h in headers if h.name.lower() in allowed and "authorization" not in h.name.lower()]


def clean_body(body: Any, limit: int = 10_000) -> Any:
    """Cap a body at ``limit`` characters, suffixing the truncation marker."""
    if body is None or body == "":
        return None

    if isinstance(body, str):
        return body[:limit] + TRUNCATION_MARKER if len(body) > limit else body

    try:
        encoded = json.dumps(body)
    except (TypeError, ValueError):
        return "[Error serializing body]"
    return encoded[:limit] + TRUNCATION_MARKER if len(encoded) > limit else body


def clean_request(request: NetworkRequest, storage: StorageConfig | None = None) -> NetworkRequest:
    storage = storage or StorageConfig()
    return request.model_copy(
        update={
            "request_headers": clean_headers(request.request_headers, storage.header_allow_list),
            "response_headers": clean_headers(request.response_headers, storage.header_allow_list),
            "request_body": clean_body(request.request_body, storage.body_limit),
            "response_body": clean_body(request.response_body, storage.body_limit),
        },
        deep=True,
    )


def clean_event(event: TraceEvent, coalescing: CoalescingConfig | None = None) -> TraceEvent:
    coalescing = coalescing or CoalescingConfig()
    cleaned = event.model_copy(deep=True)
    if cleaned.element and isinstance(cleaned.element.get("textContent"), str):
        cleaned.element["textContent"] = cleaned.element["textContent"][:200]
    if cleaned.intermediate_values and len(cleaned.intermediate_values) >= coalescing.max_intermediate_values:
        cleaned.intermediate_values = None
    return cleaned


def clean_session(
    session: Session,
    storage: StorageConfig | None = None,
    coalescing: CoalescingConfig | None = None,
) -> Session:
    """Snapshot of a session safe to persist or export."""
    snapshot = session.model_copy(update={"events": [], "network_requests": []}, deep=True)
    snapshot.events = [clean_event(e, coalescing) for e in session.events]
    snapshot.network_requests = [clean_request(r, storage) for r in session.network_requests]
    return snapshot


def _now_ms() -> int:
    return int(time.time() * 1000)


class RequestTracker:
    """Transient pool of in-flight and recently completed requests.

    Entries expire ``request_retention_ms`` after completion (or after start,
    for requests that never complete), whether or not they were attached.
    """

    def __init__(self, config: CorrelationConfig | None = None, clock: Callable[[], int] = _now_ms):
        self.config = config or CorrelationConfig()
        self.clock = clock
        self._requests: dict[str, NetworkRequest] = {}

    def __len__(self) -> int:
        self.prune()
        return len(self._requests)

    def __contains__(self, request_id: str) -> bool:
        return self.get(request_id) is not None

    def add(self, request: NetworkRequest) -> None:
        self.prune()
        self._requests[request.request_id] = request

    def get(self, request_id: str) -> NetworkRequest | None:
        self.prune()
        return self._requests.get(request_id)

    def remove(self, request_id: str) -> NetworkRequest | None:
        return self._requests.pop(request_id, None)

    def for_owner(self, owner: str) -> list[NetworkRequest]:
        self.prune()
        return [r for r in self._requests.values() if r.owner == owner]

    def candidates(self, owner: str, timestamp: int, window_ms: int | None = None) -> list[NetworkRequest]:
        """Requests for ``owner`` started within ``±window_ms`` of ``timestamp``."""
        window = self.config.window_ms if window_ms is None else window_ms
        return [r for r in self.for_owner(owner) if abs(r.timestamp - timestamp) <= window]

    def prune(self) -> int:
        cutoff = self.clock() - self.config.request_retention_ms
        expired = [
            request_id
            for request_id, request in self._requests.items()
            if (request.end_time if request.end_time is not None else request.timestamp) < cutoff
        ]
        for request_id in expired:
            del self._requests[request_id]
        return len(expired)

    def clear(self, owner: str | None = None) -> None:
        if owner is None:
            self._requests.clear()
            return
        for request_id in [k for k, r in self._requests.items() if r.owner == owner]:
            del self._requests[request_id]
