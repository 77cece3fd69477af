"""Pydantic models for intercepted network traffic."""

import json
from typing import Any, Literal

from pydantic import BaseModel, Field


class Header(BaseModel):
    """Single HTTP header."""

    name: str
    value: str = ""


class BatchOperation(BaseModel):
    """One operation unwrapped from an OData $batch body."""

    type: str = "unknown"
    method: str | None = None
    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None


class ODataAnalysis(BaseModel):
    """Structural reading of an OData request URL."""

    is_batch: bool = False
    is_metadata: bool = False
    is_count: bool = False
    request_type: str = "unknown"
    query_params: dict[str, str] = Field(default_factory=dict)
    entity_set: str | None = None
    service_root: str | None = None


class Correlation(BaseModel):
    """Confidence-scored link between an event and a request."""

    confidence: float
    time_difference: int
    causation_direction: Literal["after-click", "before-click"]
    pattern: str = "generic-interaction"
    event_id: str | None = None


class NetworkRequest(BaseModel):
    """One intercepted HTTP exchange."""

    request_id: str
    owner: str
    url: str
    method: str = "GET"
    type: str = ""
    timestamp: int
    end_time: int | None = None
    duration: int | None = None
    status_code: int | None = None
    request_headers: list[Header] = Field(default_factory=list)
    response_headers: list[Header] = Field(default_factory=list)
    request_body: Any = None
    response_body: Any = None
    odata_analysis: ODataAnalysis | None = None
    batch_operations: list[BatchOperation] = Field(default_factory=list)
    correlation: Correlation | None = None

    @property
    def is_completed(self) -> bool:
        return self.end_time is not None

    def body_text(self) -> str:
        """Request body as text, JSON-encoded when structured."""
        if self.request_body is None:
            return ""
        if isinstance(self.request_body, str):
            return self.request_body
        try:
            return json.dumps(self.request_body)
        except (TypeError, ValueError):
            return str(self.request_body)


class CorrelatedRequest(BaseModel):
    """Request summary attached to an event, with its correlation."""

    request_id: str
    url: str
    method: str
    type: str = ""
    timestamp: int
    correlation: Correlation
