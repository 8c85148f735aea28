"""Tests against a real headless Chromium, skipped when none is installed."""
from __future__ import annotations

import io

import pytest

try:
    from playwright.sync_api import sync_playwright  # type: ignore import
except ImportError as exc:
    pytest.skip(f"Playwright unavailable: {exc}", allow_module_level=True)
else:
    try:
        with sync_playwright() as playwright:
            try:
                browser = playwright.chromium.launch(headless=True)
            except Exception as exc:
                pytest.skip(f"Playwright Chromium unavailable: {exc}", allow_module_level=True)
            else:
                browser.close()
    except Exception as exc:
        pytest.skip(f"Playwright initialization failed: {exc}", allow_module_level=True)

from dashboard_reporter.browser import PDFOptions
from dashboard_reporter.browser.local import LocalBrowserInstance
from dashboard_reporter.errors import NavigationError, TabClosedError


@pytest.fixture(scope="module")
def instance():
    browser = LocalBrowserInstance()
    yield browser
    browser.close()


def test_local_instance_exposes_devtools_endpoint(instance) -> None:
    assert instance.name == "local"
    assert instance.endpoint.startswith("ws://127.0.0.1:")


def test_tab_prints_pdf(instance) -> None:
    sink = io.BytesIO()
    options = PDFOptions(
        header="<div style='font-size:8px'>Header</div>",
        body="<html><body><h1>Report</h1><p>content</p></body></html>",
        footer="<div style='font-size:8px'><span class='pageNumber'></span></div>",
        orientation="landscape",
    )
    with instance.new_tab(timeout=30) as tab:
        tab.print_to_pdf_into(options, sink)
    assert sink.getvalue().startswith(b"%PDF")
    assert len(sink.getvalue()) > 500


def test_tab_evaluates_scripts(instance) -> None:
    with instance.new_tab(timeout=30) as tab:
        tab.set_viewport(800, 600)
        result = tab.run(
            lambda page: page.set_content("<div id='x'>42</div>"),
            lambda page: page.evaluate("() => document.getElementById('x').textContent"),
        )
    assert result == "42"


def test_closed_tab_rejects_work(instance) -> None:
    tab = instance.new_tab(timeout=30)
    tab.close()
    tab.close()
    assert tab.closed
    with pytest.raises(TabClosedError):
        tab.evaluate("() => 1")


def test_unreachable_address(instance) -> None:
    with instance.new_tab(timeout=30) as tab:
        with pytest.raises(NavigationError):
            tab.navigate_and_wait_for("http://127.0.0.1:9/", event="load")
