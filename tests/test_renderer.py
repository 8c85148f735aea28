"""Tests for panel image and data fetching."""
from __future__ import annotations

import base64
import threading
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from conftest import PNG_BYTES, FakeInstance, FakeResponse, FakeSession
from dashboard_reporter.errors import DashboardHTTPError, EmptyCSVDataError, OperationCancelled, PanelRenderError
from dashboard_reporter.models import Dashboard, GridPos, Panel
from dashboard_reporter.renderer import PanelRenderer, encode_image


@pytest.fixture()
def dashboard() -> Dashboard:
    return Dashboard(uid="abc", title="Ops", variables={"var-env": ["prod"], "from": ["now-1h"], "to": ["now"]})


@pytest.fixture()
def panel() -> Panel:
    return Panel(id="4", title="CPU", grid_pos=GridPos(x=0, y=0, w=12, h=8))


def _flaky(failures: int, status: int = 500):
    attempts = {"count": 0}

    def handler(url: str) -> FakeResponse:
        attempts["count"] += 1
        if attempts["count"] <= failures:
            return FakeResponse(status, b"renderer busy")
        return FakeResponse(200, PNG_BYTES)

    return handler, attempts


def test_png_retries_until_success(config, dashboard, panel, png_base64) -> None:
    session = FakeSession()
    handler, attempts = _flaky(2)
    session.route("/render/d-solo/", handler)
    delays: list[float] = []
    config.retry_delay = 10
    renderer = PanelRenderer(None, config, session, js_content="", sleep=delays.append)

    image = renderer.panel_png(dashboard, panel)

    assert attempts["count"] == 3
    assert delays == [10, 20]
    assert image.image == png_base64
    assert image.mime_type == "image/png"


def test_png_gives_up_after_three_attempts(config, dashboard, panel) -> None:
    session = FakeSession()
    handler, attempts = _flaky(5, status=503)
    session.route("/render/d-solo/", handler)
    renderer = PanelRenderer(None, config, session, js_content="", sleep=lambda _: None)

    with pytest.raises(DashboardHTTPError) as excinfo:
        renderer.panel_png(dashboard, panel)

    assert attempts["count"] == 3
    assert excinfo.value.status == 503
    assert excinfo.value.body == "renderer busy"
    assert "/render/d-solo/abc/_" in excinfo.value.url


def test_png_retry_backoff_observes_cancel(config, dashboard, panel) -> None:
    session = FakeSession()
    cancel = threading.Event()
    calls: list[str] = []

    def handler(url: str) -> FakeResponse:
        calls.append(url)
        cancel.set()
        return FakeResponse(500, b"renderer busy")

    session.route("/render/d-solo/", handler)
    config.retry_delay = 30
    renderer = PanelRenderer(None, config, session, js_content="")

    with pytest.raises(OperationCancelled):
        renderer.panel_png(dashboard, panel, cancel=cancel)

    assert len(calls) == 1


def test_png_transport_error_is_not_retried(config, dashboard, panel) -> None:
    session = FakeSession()
    calls: list[str] = []

    def handler(url: str) -> FakeResponse:
        calls.append(url)
        raise requests.ConnectionError("connection refused")

    session.route("/render/d-solo/", handler)
    renderer = PanelRenderer(None, config, session, js_content="", sleep=lambda _: None)

    with pytest.raises(PanelRenderError) as excinfo:
        renderer.panel_png(dashboard, panel)

    assert len(calls) == 1
    assert excinfo.value.panel_id == "4"


def test_png_url_for_layouts(config, dashboard, panel) -> None:
    renderer = PanelRenderer(None, config, FakeSession(), js_content="")
    url = urlparse(renderer.panel_png_url(dashboard, panel))
    query = parse_qs(url.query)
    assert url.path == "/render/d-solo/abc/_"
    assert query["var-env"] == ["prod"]
    assert query["panelId"] == ["4"]
    assert query["theme"] == ["light"]
    assert query["timezone"] == ["UTC"]
    assert (query["width"], query["height"]) == (["1000"], ["500"])

    config.layout = "grid"
    query = parse_qs(urlparse(renderer.panel_png_url(dashboard, panel, render=False)).query)
    assert (query["width"], query["height"]) == (["768"], ["288"])
    assert urlparse(renderer.panel_png_url(dashboard, panel, render=False)).path == "/d-solo/abc/_"


def test_csv_url(config, dashboard, panel) -> None:
    renderer = PanelRenderer(None, config, FakeSession(), js_content="")
    query = parse_qs(urlparse(renderer.panel_csv_url(dashboard, panel)).query)
    assert query["viewPanel"] == ["4"]
    assert query["inspect"] == ["4"]
    assert query["inspectTab"] == ["data"]


def test_encode_image_accepts_raw_and_encoded_bodies(png_base64) -> None:
    assert encode_image(PNG_BYTES) == png_base64
    assert encode_image(png_base64.encode("ascii")) == png_base64
    assert encode_image(b"\xff\xd8\xff") == base64.b64encode(b"\xff\xd8\xff").decode("ascii")


def test_encode_image_accepts_line_wrapped_base64() -> None:
    wrapped = base64.encodebytes(PNG_BYTES * 10)
    assert b"\n" in wrapped
    encoded = encode_image(wrapped)
    assert encoded.startswith("iVBORw0KGgo")
    assert encoded == base64.b64encode(PNG_BYTES * 10).decode("ascii")


def test_native_renderer_captures_screenshot(config, dashboard, panel, png_base64) -> None:
    config.native_renderer = True
    config.custom_http_headers = {"X-Org": "7"}
    instance = FakeInstance()
    renderer = PanelRenderer(instance, config, FakeSession(), js_content="// js")

    image = renderer.panel_png(dashboard, panel, headers={"Authorization": "Bearer t"})

    assert image.image == png_base64
    tab = instance.tabs[0]
    assert tab.closed
    assert tab.viewport == (1000, 500)
    address, headers = tab.navigations[0]
    assert "/d-solo/abc/_" in address and "/render/" not in address
    assert headers == {"Authorization": "Bearer t", "X-Org": "7"}


class _Download:
    def __init__(self, url: str) -> None:
        self.value = self
        self.url = url

    def __enter__(self) -> "_Download":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


class CSVPage:
    def __init__(self, blob_url: str, text: str) -> None:
        self.blob_url = blob_url
        self.text = text
        self.clicked: list[str] = []

    def add_script_tag(self, content: str) -> None:
        pass

    def wait_for_selector(self, selector: str, state: str = "visible") -> None:
        pass

    def click(self, selector: str) -> None:
        self.clicked.append(selector)

    def expect_download(self) -> _Download:
        return _Download(self.blob_url)

    def evaluate(self, expression: str, arg=None):
        if arg == self.blob_url:
            return self.text
        return None


def _csv_instance(blob_url: str, text: str) -> FakeInstance:
    instance = FakeInstance()
    original = instance.new_tab

    def new_tab(timeout=None, cancel=None):
        tab = original(timeout, cancel)
        tab.page = CSVPage(blob_url, text)
        return tab

    instance.new_tab = new_tab
    return instance


def test_panel_csv_downloads_blob(config, dashboard, panel) -> None:
    instance = _csv_instance("blob:http://grafana.local/1234", "time,value\n1,2\n3,4\n")
    renderer = PanelRenderer(instance, config, FakeSession(), js_content="")

    data = renderer.panel_csv(dashboard, panel)

    assert data == [["time", "value"], ["1", "2"], ["3", "4"]]
    tab = instance.tabs[0]
    assert tab.closed
    assert len(tab.page.clicked) == 3


def test_panel_csv_empty_data(config, dashboard, panel) -> None:
    instance = _csv_instance("blob:http://grafana.local/1234", "")
    renderer = PanelRenderer(instance, config, FakeSession(), js_content="")
    with pytest.raises(EmptyCSVDataError) as excinfo:
        renderer.panel_csv(dashboard, panel)
    assert isinstance(excinfo.value, PanelRenderError)
    assert excinfo.value.panel_id == "4"
    assert instance.tabs[0].closed
