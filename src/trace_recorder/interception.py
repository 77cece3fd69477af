"""Incremental request lifecycle between the interception hook and the recorder."""

import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from trace_recorder.config import CorrelationConfig
from trace_recorder.models.network import NetworkRequest
from trace_recorder.network import (
    RequestTracker,
    analyze_odata_request,
    classify_request_type,
    extract_request_body,
    is_odata_request,
    is_relevant_request,
    normalize_headers,
    unwrap_batch_request,
)

logger = logging.getLogger(__name__)

RequestSink = Callable[[str, NetworkRequest], Awaitable[Any]]


class CapturedResponse(BaseModel):
    """Response body reported by the page itself."""

    url: str
    start_time: int
    data: Any = None
    content_type: str | None = None
    status: int | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.url}:{self.start_time}"


class NetworkInterceptor:
    """Builds :class:`NetworkRequest` objects as a request progresses.

    Relevant requests enter the shared :class:`RequestTracker` at start so
    events can correlate against them while they are in flight; on completion
    they are handed to ``sink(owner, request)``.
    """

    def __init__(
        self,
        tracker: RequestTracker,
        sink: RequestSink | None = None,
        config: CorrelationConfig | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.tracker = tracker
        self.sink = sink
        self.config = config or tracker.config
        self.clock = clock or tracker.clock
        self._captured: OrderedDict[str, CapturedResponse] = OrderedDict()

    def _is_relevant(self, url: str, method: str) -> bool:
        return is_relevant_request(url, method, self.config.filter_static_assets)

    def request_started(
        self,
        owner: str,
        request_id: str,
        url: str,
        method: str = "GET",
        body: Any = None,
        timestamp: int | None = None,
    ) -> NetworkRequest | None:
        if not self._is_relevant(url, method):
            logger.debug("Ignoring irrelevant request %s %s", method, url)
            return None

        request_body = extract_request_body(body)
        request = NetworkRequest(
            request_id=request_id,
            owner=owner,
            url=url,
            method=method.upper(),
            timestamp=timestamp if timestamp is not None else self.clock(),
            request_body=request_body,
            type=classify_request_type(url, method),
        )

        if is_odata_request(url):
            request.odata_analysis = analyze_odata_request(url, method)
            if request.odata_analysis.is_batch:
                request.batch_operations = unwrap_batch_request(request_body)
                logger.debug("Unwrapped %d $batch operations", len(request.batch_operations))

        self.tracker.add(request)
        logger.debug("Request intercepted: %s %s (%s)", request.method, url, request.type)
        return request

    def headers_sent(self, request_id: str, headers: Any) -> None:
        request = self.tracker.get(request_id)
        if request is not None:
            request.request_headers = normalize_headers(headers)

    def response_started(self, request_id: str, status_code: int | None, headers: Any = None) -> None:
        request = self.tracker.get(request_id)
        if request is not None:
            request.status_code = status_code
            request.response_headers = normalize_headers(headers)

    async def request_completed(self, request_id: str, end_time: int | None = None) -> NetworkRequest | None:
        request = self.tracker.get(request_id)
        if request is None or not self._is_relevant(request.url, request.method):
            return None

        request.end_time = end_time if end_time is not None else self.clock()
        request.duration = request.end_time - request.timestamp
        request.response_body = self.find_response_body(request)

        await self._deliver(request)
        return request

    async def request_failed(self, request_id: str, error: str | None = None) -> NetworkRequest | None:
        request = self.tracker.get(request_id)
        if request is None:
            return None

        request.end_time = self.clock()
        request.duration = request.end_time - request.timestamp
        request.response_body = {"captured": False, "reason": f"Request failed: {error or 'unknown error'}"}

        await self._deliver(request)
        return request

    async def _deliver(self, request: NetworkRequest) -> None:
        if self.sink is None:
            return
        try:
            await self.sink(request.owner, request)
        except Exception:
            logger.exception("Failed to deliver request %s", request.request_id)

    def response_captured(self, response: CapturedResponse | dict[str, Any]) -> None:
        """Remember a page-reported response body, keeping only the most recent."""
        if isinstance(response, dict):
            response = CapturedResponse.model_validate(response)

        self._captured[response.key] = response
        self._captured.move_to_end(response.key)
        while len(self._captured) > self.config.captured_response_limit:
            self._captured.popitem(last=False)

    def find_response_body(self, request: NetworkRequest) -> dict[str, Any]:
        response = self._captured.get(f"{request.url}:{request.timestamp}")

        if response is None:
            window = self.config.response_match_window_ms
            response = next(
                (
                    r
                    for r in self._captured.values()
                    if r.url == request.url and abs(r.start_time - request.timestamp) < window
                ),
                None,
            )

        if response is None:
            return {"captured": False, "reason": "Response body not captured"}

        return {
            "captured": True,
            "data": response.data,
            "content_type": response.content_type,
            "status": response.status,
            "headers": response.headers,
        }
