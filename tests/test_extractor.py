"""Tests for panel extraction and grid normalisation."""
from __future__ import annotations

import pytest

from conftest import FakeInstance, grid_records
from dashboard_reporter.errors import NavigationError, NoExtractionDataError, NoPanelsError
from dashboard_reporter.extractor import (
    VIEWPORT_HEIGHT,
    VIEWPORT_WIDTH,
    DashboardExtractor,
    normalize_geometry,
    round_half_away,
)


def _coords(panels):
    return [(p.id, p.grid_pos.x, p.grid_pos.y, p.grid_pos.w, p.grid_pos.h) for p in panels]


def test_round_half_away_from_zero() -> None:
    assert round_half_away(0.5) == 1
    assert round_half_away(1.5) == 2
    assert round_half_away(2.5) == 3
    assert round_half_away(-0.5) == -1
    assert round_half_away(2.4) == 2


def test_normalize_grid_layout() -> None:
    panels = normalize_geometry(grid_records(5))
    assert _coords(panels) == [
        ("1", 0, 0, 8, 8),
        ("2", 8, 0, 8, 8),
        ("3", 16, 0, 8, 8),
        ("4", 0, 8, 8, 8),
        ("5", 8, 8, 8, 8),
    ]
    assert all(value >= 0 for panel in panels for value in _coords([panel])[0][1:])
    assert panels[0].title == "Panel 1"


def test_normalize_drops_row_headers_and_duplicates() -> None:
    records = [
        {"x": 16, "y": 60, "width": 1920, "height": 30, "title": "Row", "id": "10"},
        {"x": 16, "y": 100, "width": 960, "height": 288, "title": "A", "id": 1},
        {"x": 976, "y": 100, "width": 960, "height": 288, "title": "B", "id": "2"},
        {"x": 976, "y": 100, "width": 960, "height": 288, "title": "B again", "id": "2"},
        "garbage",
    ]
    panels = normalize_geometry(records)
    assert [panel.id for panel in panels] == ["1", "2"]
    # row header still counts towards the offsets
    assert panels[0].grid_pos.y == round_half_away(40 / 36)


def test_normalize_column_coordinates_are_scale_invariant() -> None:
    records = grid_records(6)
    scaled = [
        {**record, "x": record["x"] * 1.5, "width": record["width"] * 1.5}
        for record in records
    ]
    original = [(p.id, p.grid_pos.x, p.grid_pos.w) for p in normalize_geometry(records)]
    rescaled = [(p.id, p.grid_pos.x, p.grid_pos.w) for p in normalize_geometry(scaled)]
    assert original == rescaled


def test_only_chrome_elements_is_not_a_success(config) -> None:
    instance = FakeInstance([
        {"x": 0, "y": 0, "width": 1920, "height": 30, "title": "Row 1", "id": "1"},
        {"x": 0, "y": 40, "width": 1920, "height": 40, "title": "Row 2", "id": "2"},
    ])
    extractor = DashboardExtractor(instance, config, js_content="// js")
    with pytest.raises(NoPanelsError):
        extractor.extract("abc", {})


def test_empty_script_result(config) -> None:
    extractor = DashboardExtractor(FakeInstance([]), config, js_content="// js")
    with pytest.raises(NoExtractionDataError):
        extractor.extract("abc", {})


def test_extract_drives_a_single_tab(config) -> None:
    instance = FakeInstance(grid_records(3))
    extractor = DashboardExtractor(instance, config, js_content="// injected")
    panels = extractor.extract("abc", {"var-host": ["a", "b"], "from": ["now-6h"]}, mode="full",
                               headers={"Authorization": "Bearer t"})

    assert len(panels) == 3
    assert len(instance.tabs) == 1
    tab = instance.tabs[0]
    assert tab.closed
    assert tab.viewport == (VIEWPORT_WIDTH, VIEWPORT_HEIGHT)
    address, headers = tab.navigations[0]
    assert address == "http://grafana.local/d/abc/_?var-host=a&var-host=b&from=now-6h"
    assert headers == {"Authorization": "Bearer t"}
    assert tab.page.scripts == ["// injected"]
    _, arg = tab.page.evaluated[-1]
    assert arg == ["v10.4.0", "full", 30000]


def test_tab_closed_when_navigation_fails(config) -> None:
    instance = FakeInstance(grid_records(2))
    instance.navigation_error = NavigationError("http://x", "status code is 404:Not Found", 404)
    extractor = DashboardExtractor(instance, config, js_content="")
    with pytest.raises(NavigationError):
        extractor.extract("abc", {})
    assert instance.tabs[0].closed
