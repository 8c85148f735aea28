"""Pytest configuration and fakes for the browser and HTTP layers."""
from __future__ import annotations

import base64
import json
import sys
import threading
from pathlib import Path
from typing import Any, Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dashboard_reporter.config import ReporterConfig  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakePage:
    """Stands in for a Playwright page inside ``Tab.run`` actions."""

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self.records = records or []
        self.scripts: list[str] = []
        self.evaluated: list[tuple[str, Any]] = []

    def add_script_tag(self, content: str) -> None:
        self.scripts.append(content)

    def evaluate(self, expression: str, arg: Any = None) -> Any:
        self.evaluated.append((expression, arg))
        if "waitForQueriesAndVisualizations" in expression:
            return self.records
        return None


class FakeTab:
    def __init__(self, owner: "FakeInstance", timeout: float | None) -> None:
        self.owner = owner
        self.timeout = timeout
        self.page = FakePage(owner.records)
        self.navigations: list[tuple[str, dict[str, str]]] = []
        self.viewport: tuple[int, int] | None = None
        self.closed = False
        self.pdf_body: str | None = None

    def navigate_and_wait_for(self, address, headers=None, event="networkIdle", blocked_urls=()):
        if self.owner.navigation_error is not None:
            raise self.owner.navigation_error
        self.navigations.append((address, dict(headers or {})))

    def set_viewport(self, width: int, height: int) -> None:
        self.viewport = (width, height)

    def run(self, *actions: Callable[[Any], Any], timeout: float | None = None) -> Any:
        result = None
        for action in actions:
            result = action(self.page)
        return result

    def screenshot(self, timeout: float | None = None) -> bytes:
        return PNG_BYTES

    def print_to_pdf_into(self, options, sink) -> None:
        self.pdf_body = options.body
        self.owner.printed.append(options)
        sink.write(b"%PDF-1.4 fake\n")

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeTab":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class FakeInstance:
    name = "fake"

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self.records = records or []
        self.tabs: list[FakeTab] = []
        self.printed: list[Any] = []
        self.navigation_error: Exception | None = None
        self.closed = False
        self._lock = threading.Lock()

    def new_tab(self, timeout: float | None = None, cancel: threading.Event | None = None) -> FakeTab:
        tab = FakeTab(self, timeout)
        with self._lock:
            self.tabs.append(tab)
        return tab

    def close(self) -> None:
        self.closed = True


class FakeResponse:
    def __init__(self, status_code: int, content: bytes = b"") -> None:
        self.status_code = status_code
        self.content = content

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", "replace")


class FakeSession:
    """Routes GET requests to handlers by URL substring."""

    def __init__(self) -> None:
        self.routes: list[tuple[str, Callable[[str], FakeResponse]]] = []
        self.calls: list[str] = []
        self._lock = threading.Lock()
        self.closed = False

    def route(self, fragment: str, handler: Callable[[str], FakeResponse]) -> None:
        self.routes.append((fragment, handler))

    def get(self, url: str, headers=None, timeout=None, verify=True) -> FakeResponse:
        with self._lock:
            self.calls.append(url)
        for fragment, handler in self.routes:
            if fragment in url:
                return handler(url)
        return FakeResponse(404, b"not found")

    def calls_to(self, fragment: str) -> list[str]:
        with self._lock:
            return [url for url in self.calls if fragment in url]

    def close(self) -> None:
        self.closed = True


def dashboard_json(panels: list[dict[str, Any]], title: str = "Sales Overview", uid: str = "abc") -> bytes:
    return json.dumps({"dashboard": {"uid": uid, "title": title, "panels": panels}, "meta": {}}).encode()


def grid_records(count: int, columns: int = 3) -> list[dict[str, Any]]:
    """Bounding boxes of ``count`` panels laid out 8 columns wide, 8 rows high."""

    records = []
    for index in range(count):
        column, row = index % columns, index // columns
        records.append(
            {
                "x": 16 + column * 640,
                "y": 100 + row * 288,
                "width": 640,
                "height": 288,
                "title": f"Panel {index + 1}",
                "id": str(index + 1),
            }
        )
    return records


@pytest.fixture()
def config() -> ReporterConfig:
    conf = ReporterConfig(app_url="http://grafana.local", app_version="v10.4.0", retry_delay=0.0, time_zone="UTC")
    return conf.validate()


@pytest.fixture()
def fake_instance() -> FakeInstance:
    return FakeInstance()


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture()
def png_base64() -> str:
    return base64.b64encode(PNG_BYTES).decode("ascii")
