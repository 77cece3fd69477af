"""DOM-level event source.

An init script captures interactions and page-observed response bodies and
reports them as prefixed console lines; :class:`JSInputCapture` parses those
lines back into :class:`RawEvent` objects and captured responses.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from trace_recorder.interception import CapturedResponse
from trace_recorder.models.session_state import RawEvent

logger = logging.getLogger(__name__)

EVENT_PREFIX = "__TRACE_EVENT__:"
RESPONSE_PREFIX = "__TRACE_RESPONSE__:"

# JS script to inject via addInitScript for capturing user interactions
TRACE_CAPTURE_SCRIPT = """
(function() {
    // Avoid re-injection
    if (window.__traceCaptureInstalled) return;
    window.__traceCaptureInstalled = true;

    const getSelector = (el) => {
        if (!el || el === document.body) return 'body';
        if (el.id) return '#' + el.id;
        if (el.className && typeof el.className === 'string') {
            const classes = el.className.trim().split(/\\s+/).slice(0, 2).join('.');
            if (classes) return el.tagName.toLowerCase() + '.' + classes;
        }
        let path = el.tagName.toLowerCase();
        if (el.parentElement) {
            const siblings = Array.from(el.parentElement.children).filter(c => c.tagName === el.tagName);
            if (siblings.length > 1) {
                path += ':nth-of-type(' + (siblings.indexOf(el) + 1) + ')';
            }
        }
        return path;
    };

    const getXPath = (el) => {
        const parts = [];
        while (el && el.nodeType === Node.ELEMENT_NODE) {
            let index = 1;
            let sibling = el.previousElementSibling;
            while (sibling) {
                if (sibling.tagName === el.tagName) index++;
                sibling = sibling.previousElementSibling;
            }
            parts.unshift(el.tagName.toLowerCase() + '[' + index + ']');
            el = el.parentElement;
        }
        return '/' + parts.join('/');
    };

    const getElementInfo = (el) => {
        if (!el || !el.tagName) return null;
        const tile = el.closest && el.closest('.sapUshellTile, .sapMTile');
        const tileTitle = tile && tile.querySelector('.sapMTileTitle, .sapUshellTileTitle');
        return {
            tagName: el.tagName,
            id: el.id || null,
            className: typeof el.className === 'string' ? el.className : null,
            textContent: (el.innerText || el.textContent || '').trim().slice(0, 200),
            selector: getSelector(el),
            xpath: getXPath(el),
            type: el.type || null,
            name: el.name || null,
            tileTitle: tileTitle ? tileTitle.textContent.trim() : null,
        };
    };

    const getFrameworkContext = (el) => {
        const ui5 = window.sap && window.sap.ui && window.sap.ui.getCore && window.sap.ui.getCore();
        if (!ui5 || !el) return null;
        const control = el.closest && el.closest('[data-sap-ui]');
        if (!control) return null;
        return { controlId: control.getAttribute('data-sap-ui') };
    };

    const fieldValue = (el) => {
        if (el.type === 'password') return '[REDACTED]';
        return el.value !== undefined ? el.value : (el.textContent || '');
    };

    const isFormElement = (el) => ['INPUT', 'TEXTAREA', 'SELECT'].includes(el.tagName) || el.isContentEditable;

    const modifiers = (e) => ({ ctrlKey: e.ctrlKey, shiftKey: e.shiftKey, altKey: e.altKey, metaKey: e.metaKey });

    const emit = (type, data) => {
        console.log('__TRACE_EVENT__:' + JSON.stringify({
            type: type,
            timestamp: Date.now(),
            pageUrl: window.location.href,
            pageTitle: document.title,
            ...data
        }));
    };

    document.addEventListener('click', (e) => {
        emit('click', {
            coordinates: { x: e.clientX, y: e.clientY, viewportWidth: window.innerWidth, viewportHeight: window.innerHeight },
            element: getElementInfo(e.target),
            ui5Context: getFrameworkContext(e.target),
            modifiers: modifiers(e),
        });
    }, true);

    document.addEventListener('input', (e) => {
        emit('input', {
            element: getElementInfo(e.target),
            value: fieldValue(e.target),
            inputType: e.inputType,
            ui5Context: getFrameworkContext(e.target),
        });
    }, true);

    document.addEventListener('focusin', (e) => {
        if (!isFormElement(e.target)) return;
        emit('editing_start', {
            element: getElementInfo(e.target),
            initialValue: fieldValue(e.target),
            ui5Context: getFrameworkContext(e.target),
        });
    }, true);

    document.addEventListener('focusout', (e) => {
        if (!isFormElement(e.target)) return;
        emit('editing_end', {
            element: getElementInfo(e.target),
            finalValue: fieldValue(e.target),
            ui5Context: getFrameworkContext(e.target),
        });
    }, true);

    document.addEventListener('submit', (e) => {
        emit('submit', {
            element: getElementInfo(e.target),
            action: e.target.action,
            method: e.target.method,
        });
    }, true);

    document.addEventListener('keydown', (e) => {
        const keys = ['Enter', 'Escape', 'Tab', 'F1', 'F2', 'F3', 'F4'];
        if (!(keys.includes(e.key) || e.ctrlKey || e.altKey || e.metaKey)) return;
        emit('keyboard', {
            key: e.key,
            code: e.code,
            element: getElementInfo(e.target),
            modifiers: modifiers(e),
        });
    }, true);

    document.addEventListener('drop', (e) => {
        emit('drag', {
            dragType: 'drop',
            coordinates: { x: e.clientX, y: e.clientY },
            element: getElementInfo(e.target),
        });
    }, true);

    document.addEventListener('change', (e) => {
        if (e.target.type !== 'file') return;
        emit('file_upload', {
            element: getElementInfo(e.target),
            files: Array.from(e.target.files).map(f => ({ name: f.name, size: f.size, type: f.type })),
        });
    }, true);

    window.addEventListener('beforeunload', () => emit('page_unload', {}));

    // Response bodies as seen by the page
    const report = (url, method, startTime, status, contentType, data) => {
        console.log('__TRACE_RESPONSE__:' + JSON.stringify({
            url: url, method: method, start_time: startTime, status: status,
            content_type: contentType, data: data,
        }));
    };
    const isText = (type) => /json|text\\/|xml/.test(type || '');

    const originalFetch = window.fetch;
    window.fetch = async function(input, init) {
        const startTime = Date.now();
        const response = await originalFetch.apply(this, arguments);
        try {
            const url = typeof input === 'string' ? input : input.url;
            const type = response.headers.get('content-type');
            if (isText(type)) {
                const text = await response.clone().text();
                report(new URL(url, window.location.href).href, (init && init.method) || 'GET', startTime, response.status, type, text.slice(0, 50000));
            }
        } catch (err) {}
        return response;
    };

    const originalOpen = XMLHttpRequest.prototype.open;
    const originalSend = XMLHttpRequest.prototype.send;
    XMLHttpRequest.prototype.open = function(method, url) {
        this.__trace = { method: method, url: new URL(url, window.location.href).href };
        return originalOpen.apply(this, arguments);
    };
    XMLHttpRequest.prototype.send = function() {
        if (this.__trace) {
            this.__trace.startTime = Date.now();
            this.addEventListener('loadend', () => {
                const type = this.getResponseHeader('content-type');
                if (isText(type) && typeof this.responseText === 'string') {
                    report(this.__trace.url, this.__trace.method, this.__trace.startTime, this.status, type, this.responseText.slice(0, 50000));
                }
            });
        }
        return originalSend.apply(this, arguments);
    };
})();
"""

EventCallback = Callable[[RawEvent], Awaitable[Any]]
ResponseCallback = Callable[[CapturedResponse], Any]


def parse_console_message(text: str) -> RawEvent | CapturedResponse | None:
    """Decode one console line written by the capture script.

    Returns None for unrelated or malformed lines.
    """
    if text.startswith(EVENT_PREFIX):
        payload, model = text[len(EVENT_PREFIX) :], RawEvent
    elif text.startswith(RESPONSE_PREFIX):
        payload, model = text[len(RESPONSE_PREFIX) :], CapturedResponse
    else:
        return None

    try:
        data = json.loads(payload)
        if model is RawEvent:
            return RawEvent.from_dict(data)
        return CapturedResponse.model_validate(data)
    except (ValueError, ValidationError):
        logger.debug("Ignoring malformed capture message: %.80s", text)
        return None


class JSInputCapture:
    """Captures user input at the JavaScript/DOM level via Playwright."""

    def __init__(self, on_event: EventCallback | None = None, on_response: ResponseCallback | None = None):
        self.on_event = on_event
        self.on_response = on_response
        self._installed = False

    async def install(self, context) -> None:
        """Install the capture script on a browser context."""
        if self._installed:
            return

        # Add init script to run on every page
        await context.add_init_script(TRACE_CAPTURE_SCRIPT)
        self._installed = True

    async def handle_console_text(self, text: str) -> None:
        message = parse_console_message(text)
        if isinstance(message, RawEvent) and self.on_event:
            await self.on_event(message)
        elif isinstance(message, CapturedResponse) and self.on_response:
            self.on_response(message)

    async def attach_to_page(self, page) -> None:
        """Attach console listener to capture events from a page."""

        async def handle_console(msg):
            await self.handle_console_text(msg.text)

        page.on("console", handle_console)

    @staticmethod
    def get_init_script() -> str:
        """Get the JS script for manual injection."""
        return TRACE_CAPTURE_SCRIPT
