"""Recorder configuration: defaults, environment overrides and YAML files."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

Verbosity = Literal["summary", "default", "verbose"]


class CoalescingConfig(BaseModel):
    """Input coalescing and event filtering thresholds."""

    enabled: bool = True
    time_threshold_ms: int = 1500
    max_length_delta: int = 3
    similarity_threshold: float = 0.7
    pause_threshold_ms: int = 500
    filter_redundant: bool = True
    rapid_click_ms: int = 500
    verbosity: Verbosity = "verbose"
    max_intermediate_values: int = 50  # snapshot cap, live events keep everything


class CorrelationConfig(BaseModel):
    """Event/request correlation constants."""

    window_ms: int = 10_000
    pattern_boost: float = 25
    confidence_cap: float = 95
    pre_event_penalty: float = 0.7
    tie_tolerance: float = 5
    request_retention_ms: int = 30_000
    response_match_window_ms: int = 5000
    captured_response_limit: int = 100
    filter_static_assets: bool = True


class ScreenshotConfig(BaseModel):
    """Screenshot capture and retention."""

    enabled: bool = True
    max_per_owner: int = 100
    event_types: list[str] = Field(
        default_factory=lambda: [
            "click",
            "editing_start",
            "editing_end",
            "submit",
            "keyboard",
            "file_upload",
        ]
    )


class StorageConfig(BaseModel):
    """Durable store and persistence throttling."""

    sessions_dir: Path = Path("tmp/sessions")
    audit_dir: Path = Path("tmp/data")
    persist_every_events: int = 10
    persist_every_requests: int = 5
    body_limit: int = 10_000
    header_allow_list: list[str] = Field(
        default_factory=lambda: [
            "content-type",
            "content-length",
            "accept",
            "accept-language",
            "x-csrf-token",
            "x-sap-request-id",
            "sap-contextid",
            "sap-cancel-on-close",
        ]
    )


class ExportConfig(BaseModel):
    """Export naming."""

    filename_prefix: str = "trace"


class BrowserConfig(BaseModel):
    """Playwright recording host configuration."""

    headless: bool = False
    viewport_width: int = 1920
    viewport_height: int = 1080


class Config(BaseModel):
    """Root of the recorder configuration tree."""

    coalescing: CoalescingConfig = Field(default_factory=CoalescingConfig)
    correlation: CorrelationConfig = Field(default_factory=CorrelationConfig)
    screenshots: ScreenshotConfig = Field(default_factory=ScreenshotConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            coalescing=CoalescingConfig(
                time_threshold_ms=int(os.getenv("COALESCE_THRESHOLD_MS", "1500")),
                verbosity=os.getenv("EVENT_VERBOSITY", "verbose"),
            ),
            correlation=CorrelationConfig(
                window_ms=int(os.getenv("CORRELATION_WINDOW_MS", "10000")),
            ),
            screenshots=ScreenshotConfig(
                max_per_owner=int(os.getenv("SCREENSHOT_LIMIT", "100")),
            ),
            storage=StorageConfig(
                sessions_dir=Path(os.getenv("SESSIONS_DIR", "tmp/sessions")),
                audit_dir=Path(os.getenv("AUDIT_DIR", "tmp/data")),
            ),
            browser=BrowserConfig(
                headless=os.getenv("HEADLESS", "false").lower() == "true",
            ),
            log_level=os.getenv("TRACE_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, config_path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file (if exists) merged with env vars.

        Environment variables take precedence over YAML values.
        """
        base_config: dict[str, Any] = {}

        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    base_config = yaml.safe_load(f) or {}

        default_path = Path("config.yml")
        if not config_path and default_path.exists():
            with open(default_path) as f:
                base_config = yaml.safe_load(f) or {}

        config = cls(**base_config) if base_config else cls()

        env_config = cls.from_env()

        # Merge - env vars take precedence for explicitly set values
        if os.getenv("COALESCE_THRESHOLD_MS"):
            config.coalescing.time_threshold_ms = env_config.coalescing.time_threshold_ms
        if os.getenv("EVENT_VERBOSITY"):
            config.coalescing.verbosity = env_config.coalescing.verbosity
        if os.getenv("CORRELATION_WINDOW_MS"):
            config.correlation.window_ms = env_config.correlation.window_ms
        if os.getenv("SCREENSHOT_LIMIT"):
            config.screenshots.max_per_owner = env_config.screenshots.max_per_owner
        if os.getenv("SESSIONS_DIR"):
            config.storage.sessions_dir = env_config.storage.sessions_dir
        if os.getenv("AUDIT_DIR"):
            config.storage.audit_dir = env_config.storage.audit_dir
        if os.getenv("HEADLESS"):
            config.browser.headless = env_config.browser.headless
        if os.getenv("TRACE_LOG_LEVEL"):
            config.log_level = env_config.log_level

        return config

    def to_yaml(self, path: Path | str) -> None:
        """Write the configuration tree to ``path`` as YAML."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)
