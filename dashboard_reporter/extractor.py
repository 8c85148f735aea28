"""Panel geometry extraction from a live dashboard page."""
from __future__ import annotations

import logging
import math
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import urlencode

from .browser import BrowserInstance
from .config import ReporterConfig
from .errors import NoExtractionDataError, NoPanelsError
from .helpers import time_track
from .models import GRID_COLUMNS, GridPos, Panel, panel_id

logger = logging.getLogger(__name__)

# 1920px of usable width plus Grafana's 16px side margins, so a column is 80px.
# The page has to be tall enough for every panel to be laid out and loaded.
VIEWPORT_WIDTH = 1952
VIEWPORT_HEIGHT = 10800
HEIGHT_SCALE = 36.0

JS_PATH = Path(__file__).resolve().parent / "js" / "panels.js"


def load_panels_js() -> str:
    return JS_PATH.read_text(encoding="utf-8")


def round_half_away(value: float) -> float:
    """Round to nearest, ties away from zero."""

    if value >= 0:
        return float(math.floor(value + 0.5))
    return float(math.ceil(value - 0.5))


def _number(record: Mapping[str, Any], key: str) -> float:
    value = record.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def normalize_geometry(records: Iterable[Any]) -> List[Panel]:
    """Convert absolute bounding boxes into 24 column grid coordinates.

    Elements whose height rounds to a single grid row or less are row headers
    and other chrome, and are dropped. Repeated IDs keep their first element.
    """

    boxes: List[Panel] = []
    x_offset = math.inf
    y_offset = math.inf
    max_width = 0.0
    for record in records:
        if not isinstance(record, Mapping):
            continue
        grid = GridPos(
            x=_number(record, "x"),
            y=_number(record, "y"),
            w=_number(record, "width"),
            h=_number(record, "height"),
        )
        x_offset = min(x_offset, grid.x)
        y_offset = min(y_offset, grid.y)
        max_width = max(max_width, grid.x + grid.w)
        title = record.get("title")
        boxes.append(Panel(id=panel_id(record.get("id")), title="" if title is None else str(title), grid_pos=grid))

    if not boxes:
        return []

    width_scale = round_half_away((max_width - x_offset) / GRID_COLUMNS) or 1.0

    panels: List[Panel] = []
    seen = set()
    for panel in boxes:
        grid = panel.grid_pos
        if round_half_away(grid.h / HEIGHT_SCALE) <= 1:
            continue
        if panel.id in seen:
            logger.debug("dropping duplicate panel element %s", panel.id)
            continue
        seen.add(panel.id)
        panel.grid_pos = GridPos(
            x=round_half_away((grid.x - x_offset) / width_scale),
            y=round_half_away((grid.y - y_offset) / HEIGHT_SCALE),
            w=round_half_away(grid.w / width_scale),
            h=round_half_away(grid.h / HEIGHT_SCALE),
        )
        panels.append(panel)
    return panels


class DashboardExtractor:
    """Loads a dashboard in a tab and reports where its panels are."""

    def __init__(self, instance: BrowserInstance, config: ReporterConfig, js_content: Optional[str] = None) -> None:
        self._instance = instance
        self._config = config
        self._js = js_content if js_content is not None else load_panels_js()

    def dashboard_url(self, uid: str, variables: Mapping[str, Sequence[str]]) -> str:
        return f"{self._config.app_url}/d/{uid}/_?{urlencode(variables, doseq=True)}"

    def panel_metadata(
        self,
        uid: str,
        variables: Mapping[str, Sequence[str]],
        mode: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[Dict[str, Any]]:
        """Return the raw bounding box records the page script reports."""

        url = self.dashboard_url(uid, variables)
        mode = mode or self._config.dashboard_mode
        timeout_ms = int(self._config.http_timeout * 1000)
        with time_track("fetch dashboard panels metadata", logger, url=url):
            with self._instance.new_tab(timeout=2 * self._config.http_timeout, cancel=cancel) as tab:
                tab.navigate_and_wait_for(url, headers=headers, event="networkIdle")
                tab.set_viewport(VIEWPORT_WIDTH, VIEWPORT_HEIGHT)
                data = tab.run(
                    lambda page: page.add_script_tag(content=self._js),
                    lambda page: page.evaluate(
                        "([version, mode, timeout]) => waitForQueriesAndVisualizations(version, mode, timeout)",
                        [self._config.app_version, mode, timeout_ms],
                    ),
                )
        if not data:
            raise NoExtractionDataError()
        logger.debug("dashboard data fetched from browser: %d elements", len(data))
        return list(data)

    def extract(
        self,
        uid: str,
        variables: Mapping[str, Sequence[str]],
        mode: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[Panel]:
        records = self.panel_metadata(uid, variables, mode=mode, headers=headers, cancel=cancel)
        panels = normalize_geometry(records)
        if not panels:
            raise NoPanelsError()
        logger.debug("fetched panels: %s", "; ".join(str(panel) for panel in panels))
        return panels


__all__ = [
    "DashboardExtractor",
    "HEIGHT_SCALE",
    "VIEWPORT_HEIGHT",
    "VIEWPORT_WIDTH",
    "load_panels_js",
    "normalize_geometry",
    "round_half_away",
]
