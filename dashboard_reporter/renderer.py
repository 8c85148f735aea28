"""Fetching panel images and tabular data."""
from __future__ import annotations

import base64
import binascii
import csv
import io
import logging
import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlencode

import requests
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_incrementing

from .browser import BrowserInstance
from .config import ReporterConfig
from .errors import (
    BrowserError,
    DashboardHTTPError,
    EmptyBlobURLError,
    EmptyCSVDataError,
    OperationCancelled,
    PanelRenderError,
    TabTimeoutError,
)
from .extractor import load_panels_js
from .helpers import time_track
from .models import CSVData, Dashboard, Panel, PanelImage

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"

# Grid layout scales panels at 64px per column, 36px per row. Simple layout
# puts one fixed size panel on each page.
GRID_COLUMN_PX = 64
GRID_ROW_PX = 36
SIMPLE_SIZE = (1000, 500)

SEL_DOWNLOAD_CSV_BUTTON = 'div[aria-label="Panel inspector Data content"] button[type="button"]'
SEL_EXPAND_DATA_OPTIONS = "div[role='dialog'] button[aria-expanded=false]"
SEL_APPLY_TRANSFORMATIONS_TOGGLE = (
    'div[data-testid="dataOptions"] input:not(#excel-toggle):not(#formatted-data-toggle) + label'
)
FETCH_BLOB_JS = "url => fetch(url).then(r => r.blob()).then(b => new Response(b).text())"
BLOB_FETCH_TIMEOUT = 45.0


def encode_image(body: bytes) -> str:
    """Return ``body`` as base64, whether it arrived raw or already encoded."""

    if body.startswith(PNG_MAGIC):
        return base64.b64encode(body).decode("ascii")
    # encoders may wrap lines every 76 characters
    stripped = b"".join(body.split())
    if stripped:
        try:
            base64.b64decode(stripped, validate=True)
        except (binascii.Error, ValueError):
            pass
        else:
            return stripped.decode("ascii")
    return base64.b64encode(body).decode("ascii")


class PanelRenderer:
    """Renders single panels through the image renderer or the browser."""

    def __init__(
        self,
        instance: Optional[BrowserInstance],
        config: ReporterConfig,
        http: requests.Session,
        js_content: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._instance = instance
        self._config = config
        self._http = http
        self._js = js_content
        self._sleep = sleep

    @property
    def js(self) -> str:
        if self._js is None:
            self._js = load_panels_js()
        return self._js

    def panel_dims(self, panel: Panel) -> Tuple[int, int]:
        if self._config.layout == "grid":
            return int(panel.grid_pos.w * GRID_COLUMN_PX), int(panel.grid_pos.h * GRID_ROW_PX)
        return SIMPLE_SIZE

    def _query(self, dashboard: Dashboard, extra: Sequence[Tuple[str, str]]) -> List[Tuple[str, str]]:
        query = [(key, value) for key, values in dashboard.variables.items() for value in values]
        query.extend(extra)
        return query

    def panel_png_url(self, dashboard: Dashboard, panel: Panel, render: bool = True) -> str:
        width, height = self.panel_dims(panel)
        extra = [("theme", self._config.theme), ("panelId", panel.id)]
        if self._config.time_zone and not dashboard.variables.get("timezone"):
            extra.append(("timezone", self._config.time_zone))
        extra.extend([("width", str(width)), ("height", str(height))])
        prefix = "render/" if render else ""
        query = urlencode(self._query(dashboard, extra))
        return f"{self._config.app_url}/{prefix}d-solo/{dashboard.uid}/_?{query}"

    def panel_csv_url(self, dashboard: Dashboard, panel: Panel) -> str:
        extra = [
            ("theme", self._config.theme),
            ("viewPanel", panel.id),
            ("inspect", panel.id),
            ("inspectTab", "data"),
        ]
        return f"{self._config.app_url}/d/{dashboard.uid}/_?{urlencode(self._query(dashboard, extra))}"

    def panel_png(
        self,
        dashboard: Dashboard,
        panel: Panel,
        headers: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PanelImage:
        if self._config.native_renderer:
            return self._png_native(dashboard, panel, headers, cancel)
        return self._png_image_renderer(dashboard, panel, headers, cancel)

    def _png_image_renderer(
        self,
        dashboard: Dashboard,
        panel: Panel,
        headers: Optional[Mapping[str, str]],
        cancel: Optional[threading.Event],
    ) -> PanelImage:
        url = self.panel_png_url(dashboard, panel, render=True)
        delay = self._config.retry_delay

        def fetch() -> requests.Response:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"request cancelled while fetching panel {panel.id}")
            try:
                return self._http.get(
                    url,
                    headers=dict(headers or {}),
                    timeout=self._config.http_timeout,
                    verify=not self._config.skip_tls_check,
                )
            except requests.RequestException as exc:
                raise PanelRenderError(panel.id, "PNG", f"error executing request for {url}: {exc}") from exc

        def give_up(state: RetryCallState) -> requests.Response:
            response = state.outcome.result()
            raise DashboardHTTPError(url, response.status_code, response.text)

        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "panel %s returned %s, retrying in %.0fs",
                panel.id,
                state.outcome.result().status_code,
                state.next_action.sleep,
            )

        retrying = Retrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_incrementing(start=delay, increment=delay),
            retry=retry_if_result(lambda response: not 200 <= response.status_code < 300),
            sleep=self._sleeper(cancel),
            before_sleep=log_retry,
            retry_error_callback=give_up,
        )
        with time_track("fetch panel PNG", logger, panel_id=panel.id, renderer="image-renderer", url=url):
            response = retrying(fetch)
        return PanelImage(image=encode_image(response.content), mime_type="image/png")

    def _sleeper(self, cancel: Optional[threading.Event]) -> Callable[[float], None]:
        """Backoff sleep that gives up as soon as ``cancel`` is set."""

        def sleep(seconds: float) -> None:
            if cancel is None:
                self._sleep(seconds)
            elif cancel.wait(seconds):
                raise OperationCancelled("request cancelled during retry backoff")

        return sleep

    def _browser_headers(self, headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
        merged = dict(headers or {})
        merged.update(self._config.custom_http_headers)
        return merged

    def _require_instance(self) -> BrowserInstance:
        if self._instance is None:
            raise BrowserError("no browser instance available")
        return self._instance

    def _png_native(
        self,
        dashboard: Dashboard,
        panel: Panel,
        headers: Optional[Mapping[str, str]],
        cancel: Optional[threading.Event],
    ) -> PanelImage:
        url = self.panel_png_url(dashboard, panel, render=False)
        width, height = self.panel_dims(panel)
        timeout_ms = int(self._config.http_timeout * 1000)
        with time_track("fetch panel PNG", logger, panel_id=panel.id, renderer="native", url=url):
            instance = self._require_instance()
            with instance.new_tab(timeout=2 * self._config.http_timeout, cancel=cancel) as tab:
                try:
                    tab.navigate_and_wait_for(url, headers=self._browser_headers(headers), event="networkIdle")
                    tab.set_viewport(width, height)
                    tab.run(
                        lambda page: page.add_script_tag(content=self.js),
                        lambda page: page.evaluate(
                            "([version, timeout]) => waitForQueriesAndVisualizations(version, 'default', timeout)",
                            [self._config.app_version, timeout_ms],
                        ),
                    )
                    image = tab.screenshot()
                except BrowserError as exc:
                    raise PanelRenderError(panel.id, "PNG", f"error fetching panel PNG from browser {url}: {exc}") from exc
        return PanelImage(image=base64.b64encode(image).decode("ascii"), mime_type="image/png")

    def panel_csv(
        self,
        dashboard: Dashboard,
        panel: Panel,
        headers: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> CSVData:
        """Download the panel's data through the inspect drawer."""

        url = self.panel_csv_url(dashboard, panel)
        logger.debug("fetch table data via browser from %s", url)
        with time_track("fetch panel CSV", logger, panel_id=panel.id, url=url):
            instance = self._require_instance()
            with instance.new_tab(timeout=self._config.http_timeout, cancel=cancel) as tab:
                try:
                    text = self._download_csv(tab, panel, url, headers)
                except BrowserError as exc:
                    raise PanelRenderError(panel.id, "CSV", f"error fetching CSV data from browser {url}: {exc}") from exc
        try:
            return [row for row in csv.reader(io.StringIO(text))]
        except csv.Error as exc:
            raise PanelRenderError(panel.id, "CSV", f"error reading CSV data: {exc}") from exc

    def _download_csv(self, tab, panel: Panel, url: str, headers: Optional[Mapping[str, str]]) -> str:
        tab.navigate_and_wait_for(url, headers=headers, event="networkIdle")
        tab.run(lambda page: page.wait_for_selector(SEL_DOWNLOAD_CSV_BUTTON, state="visible"), timeout=2)
        tab.run(lambda page: page.click(SEL_EXPAND_DATA_OPTIONS), timeout=2)
        # toggled off and on again so the transformations are applied
        for _ in range(2):
            try:
                tab.run(lambda page: page.click(SEL_APPLY_TRANSFORMATIONS_TOGGLE), timeout=1)
            except TabTimeoutError:
                logger.debug("apply transformations toggle not found for panel %s", panel.id)

        def trigger_download(page) -> str:
            with page.expect_download() as download:
                page.evaluate("() => clickDownloadCSVButton()")
            return download.value.url

        blob_url = tab.run(lambda page: page.add_script_tag(content=self.js), trigger_download)
        if not blob_url:
            raise EmptyBlobURLError(panel.id, url)
        logger.debug("got CSV download URL %s", blob_url)

        text = tab.run(lambda page: page.evaluate(FETCH_BLOB_JS, blob_url), timeout=BLOB_FETCH_TIMEOUT)
        if not text:
            raise EmptyCSVDataError(panel.id, url)
        return text


__all__ = [
    "GRID_COLUMN_PX",
    "GRID_ROW_PX",
    "MAX_ATTEMPTS",
    "PanelRenderer",
    "SIMPLE_SIZE",
    "encode_image",
]
