"""Playwright-driven browser that feeds the recorder."""

import logging
import uuid
from typing import Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Request,
    Response,
    async_playwright,
)

from trace_recorder.config import Config
from trace_recorder.errors import CaptureError
from trace_recorder.input_capture import JSInputCapture
from trace_recorder.interception import NetworkInterceptor
from trace_recorder.models.session_state import RawEvent
from trace_recorder.recording import RecordingManager

logger = logging.getLogger(__name__)


class RecordingBrowser:
    """Browser whose pages are event and request sources for a RecordingManager.

    Every page gets an owner id. DOM events reported by the capture script go
    to ``manager.ingest_event(owner, ...)``; relevant requests flow through a
    :class:`NetworkInterceptor` into ``manager.ingest_network_request``. The
    browser also serves as the manager's screenshot source.

    Usage:
        manager = RecordingManager(config)
        async with RecordingBrowser(manager) as browser:
            owner = await browser.new_page("https://example.com")
            await manager.start(owner)
    """

    def __init__(
        self,
        manager: RecordingManager,
        config: Config | None = None,
        headless: bool | None = None,
    ):
        """Initialize RecordingBrowser.

        Args:
            manager: Recorder receiving events and requests
            config: Configuration object (defaults to the manager's)
            headless: Override headless setting
        """
        self.manager = manager
        self.config = config or manager.config
        if headless is not None:
            self.config.browser.headless = headless

        self.interceptor = NetworkInterceptor(manager.tracker, sink=manager.ingest_network_request)

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._pages: dict[str, Page] = {}
        self._request_ids: dict[Request, str] = {}

        if manager.capture is None:
            manager.capture = self

    @property
    def context(self) -> BrowserContext:
        if not self._context:
            raise RuntimeError("Browser not started. Call start() first.")
        return self._context

    @property
    def owners(self) -> list[str]:
        return list(self._pages)

    def page_for(self, owner: str) -> Page:
        page = self._pages.get(owner)
        if page is None:
            raise KeyError(f"No page for owner: {owner}")
        return page

    async def start(self) -> "RecordingBrowser":
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.config.browser.headless)

        context_options: dict[str, Any] = {
            "viewport": {
                "width": self.config.browser.viewport_width,
                "height": self.config.browser.viewport_height,
            },
        }
        self._context = await self._browser.new_context(**context_options)
        logger.info("Browser started (headless=%s)", self.config.browser.headless)
        return self

    async def new_page(self, url: str | None = None, owner: str | None = None) -> str:
        """Open a page wired to the recorder.

        Args:
            url: Initial URL to navigate to
            owner: Owner id for the page (generated if not provided)

        Returns:
            The owner id under which the page's events are recorded
        """
        owner = owner or f"page-{uuid.uuid4().hex[:8]}"
        page = await self.context.new_page()
        await self._attach(owner, page)
        if url:
            await page.goto(url)
        return owner

    async def _attach(self, owner: str, page: Page) -> None:
        async def on_event(raw: RawEvent) -> None:
            await self.manager.ingest_event(owner, raw)

        capture = JSInputCapture(on_event=on_event, on_response=self.interceptor.response_captured)
        await page.add_init_script(capture.get_init_script())
        await capture.attach_to_page(page)

        page.on("request", lambda request: self._on_request(owner, request))
        page.on("response", self._on_response)
        page.on("requestfinished", self._on_request_finished)
        page.on("requestfailed", self._on_request_failed)
        page.on("close", lambda _: self._pages.pop(owner, None))

        self._pages[owner] = page
        logger.debug("Attached recorder hooks to page %s", owner)

    # Network hooks

    def _on_request(self, owner: str, request: Request) -> None:
        request_id = uuid.uuid4().hex
        tracked = self.interceptor.request_started(
            owner,
            request_id,
            request.url,
            method=request.method,
            body=request.post_data_buffer,
        )
        if tracked is None:
            return
        self._request_ids[request] = request_id
        self.interceptor.headers_sent(request_id, request.headers)

    def _on_response(self, response: Response) -> None:
        request_id = self._request_ids.get(response.request)
        if request_id is not None:
            self.interceptor.response_started(request_id, response.status, response.headers)

    async def _on_request_finished(self, request: Request) -> None:
        request_id = self._request_ids.pop(request, None)
        if request_id is not None:
            await self.interceptor.request_completed(request_id)

    async def _on_request_failed(self, request: Request) -> None:
        request_id = self._request_ids.pop(request, None)
        if request_id is not None:
            await self.interceptor.request_failed(request_id, request.failure)

    # Screenshot source

    async def capture(self, owner: str, element_info: dict[str, Any] | None = None) -> bytes:
        page = self._pages.get(owner)
        if page is None:
            raise CaptureError(f"No page for owner: {owner}")
        try:
            return await page.screenshot(type="png")
        except PlaywrightError as e:
            raise CaptureError(f"Screenshot failed for {owner}: {e}") from e

    async def stop(self) -> None:
        """Stop recording on every page and close the browser."""
        for owner in list(self._pages):
            await self.manager.stop(owner)

        if self._context:
            await self._context.close()
        if self._browser:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()

        self._pages.clear()
        self._request_ids.clear()
        self._context = None
        self._browser = None
        self._playwright = None

    async def __aenter__(self) -> "RecordingBrowser":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
