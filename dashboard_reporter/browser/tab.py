"""A single isolated browsing context attached to a shared browser."""
from __future__ import annotations

import logging
import shutil
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Iterator, Mapping, Optional, Sequence

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from ..errors import NavigationError, OperationCancelled, ScriptError, TabClosedError, TabTimeoutError
from .stream import CDPStreamReader

logger = logging.getLogger(__name__)

# Live websockets never finish their handshake when auth headers are injected,
# so these would keep the page from ever reaching network idle.
DEFAULT_BLOCKED_URLS = ("*/api/frontend-metrics", "*/api/live/ws", "*/api/user/*")

LIFECYCLE_EVENTS = {
    "networkIdle": "networkidle",
    "networkidle": "networkidle",
    "load": "load",
    "DOMContentLoaded": "domcontentloaded",
    "domcontentloaded": "domcontentloaded",
    "commit": "commit",
}

Action = Callable[[Any], Any]


@dataclass(slots=True)
class PDFOptions:
    header: str = ""
    body: str = ""
    footer: str = ""
    orientation: str = "portrait"
    header_footer: bool = True


class Tab:
    """Owns one Playwright driver, browser connection, context and page.

    Playwright's sync objects are bound to the thread that created them, so a
    tab must be created, used and closed by a single thread.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        ignore_https_errors: bool = False,
        blocked_urls: Sequence[str] = (),
    ) -> None:
        self._endpoint = endpoint
        self._cancel = cancel
        self._deadline = time.monotonic() + timeout if timeout else None
        self._blocked_urls = [*DEFAULT_BLOCKED_URLS, *blocked_urls]
        self._closed = False
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._session = None
        try:
            self._open(ignore_https_errors)
        except Exception:
            self.close()
            raise

    def _open(self, ignore_https_errors: bool) -> None:
        self._check()
        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.connect_over_cdp(
                self._endpoint, timeout=self._timeout_ms()
            )
            self._context = self._browser.new_context(
                accept_downloads=True,
                ignore_https_errors=ignore_https_errors,
            )
            self._page = self._context.new_page()
            self._session = self._context.new_cdp_session(self._page)
        except PlaywrightTimeoutError as exc:
            raise TabTimeoutError(f"timed out connecting to browser at {self._endpoint}") from exc
        except PlaywrightError as exc:
            raise NavigationError(self._endpoint, f"cannot open tab: {exc.message}") from exc

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def page(self) -> Any:
        self._check()
        return self._page

    def with_timeout(self, timeout: float) -> None:
        """Shorten the tab deadline to ``timeout`` seconds from now."""

        deadline = time.monotonic() + timeout
        if self._deadline is None or deadline < self._deadline:
            self._deadline = deadline

    def _check(self) -> None:
        if self._closed:
            raise TabClosedError("tab is already closed")
        if self._cancel is not None and self._cancel.is_set():
            raise OperationCancelled("request cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise TabTimeoutError("tab deadline exceeded")

    def _timeout_ms(self, timeout: Optional[float] = None) -> float:
        remaining = None
        if self._deadline is not None:
            remaining = max(self._deadline - time.monotonic(), 0.001)
        if timeout is not None:
            remaining = timeout if remaining is None else min(timeout, remaining)
        # zero disables timeouts in Playwright
        return 0 if remaining is None else remaining * 1000

    @contextmanager
    def _guard(self, what: str, timeout: Optional[float] = None) -> Iterator[None]:
        self._check()
        self._page.set_default_timeout(self._timeout_ms(timeout))
        try:
            yield
        except PlaywrightTimeoutError as exc:
            raise TabTimeoutError(f"timed out while {what}") from exc
        except PlaywrightError as exc:
            if self._cancel is not None and self._cancel.is_set():
                raise OperationCancelled("request cancelled") from exc
            raise ScriptError(f"error while {what}: {exc.message}") from exc

    def navigate_and_wait_for(
        self,
        address: str,
        headers: Optional[Mapping[str, str]] = None,
        event: str = "networkIdle",
        blocked_urls: Sequence[str] = (),
    ) -> None:
        """Navigate to ``address`` and block until ``event`` fires.

        Anything but a 2xx navigation response raises ``NavigationError``.
        """

        wait_until = LIFECYCLE_EVENTS.get(event)
        if wait_until is None:
            raise ValueError(f"unsupported lifecycle event {event}")
        self._check()
        try:
            self._session.send("Network.enable")
            self._session.send("Network.setBlockedURLs", {"urls": [*self._blocked_urls, *blocked_urls]})
            if headers:
                self._page.set_extra_http_headers({str(k): str(v) for k, v in headers.items()})
            response = self._page.goto(address, wait_until=wait_until, timeout=self._timeout_ms())
        except PlaywrightTimeoutError as exc:
            raise TabTimeoutError(f"timed out waiting for {event} on page {address}") from exc
        except PlaywrightError as exc:
            raise NavigationError(address, exc.message) from exc
        if response is None:
            raise NavigationError(address, "no response received")
        if not response.ok:
            raise NavigationError(address, f"status code is {response.status}:{response.status_text}", response.status)

    def run(self, *actions: Action, timeout: Optional[float] = None) -> Any:
        """Run page actions in order and return the result of the last one."""

        result = None
        with self._guard("running page actions", timeout):
            for action in actions:
                self._check()
                result = action(self._page)
        return result

    def evaluate(self, expression: str, arg: Any = None, timeout: Optional[float] = None) -> Any:
        with self._guard("evaluating script", timeout):
            return self._page.evaluate(expression, arg)

    def set_viewport(self, width: int, height: int) -> None:
        with self._guard("setting viewport"):
            self._page.set_viewport_size({"width": int(width), "height": int(height)})

    def screenshot(self, timeout: Optional[float] = None) -> bytes:
        with self._guard("capturing screenshot", timeout):
            return self._page.screenshot(type="png")

    def print_to_pdf(self, options: PDFOptions) -> CDPStreamReader:
        """Print ``options.body`` and return a stream of the PDF bytes."""

        with self._guard("printing to PDF"):
            self._page.set_content(options.body, wait_until="networkidle")
            params = {
                "preferCSSPageSize": True,
                "printBackground": True,
                "landscape": options.orientation == "landscape",
                "transferMode": "ReturnAsStream",
            }
            if options.header_footer:
                params.update(
                    displayHeaderFooter=True,
                    headerTemplate=options.header,
                    footerTemplate=options.footer,
                )
            result = self._session.send("Page.printToPDF", params)
        return CDPStreamReader(self._session, result["stream"])

    def print_to_pdf_into(self, options: PDFOptions, sink: BinaryIO) -> None:
        reader = self.print_to_pdf(options)
        try:
            shutil.copyfileobj(reader, sink)
        except PlaywrightError as exc:
            raise ScriptError(f"failed to copy PDF stream: {exc.message}") from exc
        finally:
            reader.close()

    def close(self) -> None:
        """Clear cookies and release everything the tab holds. Never raises."""

        if self._closed:
            return
        self._closed = True
        if self._session is not None:
            try:
                self._session.send("Network.clearBrowserCookies")
            except Exception as exc:
                logger.error("got error from clear browser cookies: %s", exc)
        for name, resource in (("context", self._context), ("browser", self._browser)):
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as exc:
                logger.error("got error from closing tab %s: %s", name, exc)
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception as exc:
                logger.error("got error from stopping playwright driver: %s", exc)
        self._session = self._page = self._context = self._browser = self._playwright = None

    def __enter__(self) -> "Tab":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["DEFAULT_BLOCKED_URLS", "PDFOptions", "Tab"]
