"""Dashboard and panel data models."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import DashboardModelError, PanelDataAlreadySetError
from .timerange import TimeRange

GRID_COLUMNS = 24

Variables = Dict[str, List[str]]
CSVData = List[List[str]]


def panel_id(raw: Any) -> str:
    """Return the canonical string form of a panel ID sent as number or string."""

    if raw is None:
        return ""
    if isinstance(raw, bool):
        return str(int(raw))
    if isinstance(raw, int):
        return str(raw)
    if isinstance(raw, float):
        return str(int(raw))
    return str(raw)


def base_panel_id(value: str) -> str:
    """Strip the clone suffix Grafana adds to repeated panels."""

    return value.split("-clone")[0]


def _bare_id(value: str) -> str:
    bare = base_panel_id(value)
    if bare.startswith("panel-"):
        bare = bare[len("panel-"):]
    return bare


@dataclass(slots=True)
class GridPos:
    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0

    @classmethod
    def from_json(cls, data: Mapping[str, Any] | None) -> "GridPos":
        data = data or {}
        return cls(
            x=float(data.get("x", 0) or 0),
            y=float(data.get("y", 0) or 0),
            w=float(data.get("w", 0) or 0),
            h=float(data.get("h", 0) or 0),
        )


@dataclass(frozen=True, slots=True)
class PanelImage:
    image: str
    mime_type: str = "image/png"

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.image}"

    def __str__(self) -> str:
        return self.data_uri()


@dataclass(slots=True)
class Panel:
    """One renderable visualisation of a dashboard."""

    id: str
    type: str = ""
    title: str = ""
    grid_pos: GridPos = field(default_factory=GridPos)
    repeat: Optional[str] = None
    encoded_image: Optional[PanelImage] = None
    csv_data: Optional[CSVData] = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Panel":
        repeat = data.get("repeat")
        return cls(
            id=panel_id(data.get("id")),
            type=str(data.get("type", "") or ""),
            title=str(data.get("title", "") or ""),
            grid_pos=GridPos.from_json(data.get("gridPos")),
            repeat=str(repeat) if repeat else None,
        )

    def attach_image(self, image: PanelImage) -> None:
        if self.encoded_image is not None:
            raise PanelDataAlreadySetError(f"image of panel {self.id} is already set")
        self.encoded_image = image

    def attach_csv(self, data: CSVData) -> None:
        if self.csv_data is not None:
            raise PanelDataAlreadySetError(f"CSV data of panel {self.id} is already set")
        self.csv_data = data

    def __str__(self) -> str:
        return f"Panel ID: {self.id} and Title: {self.title}"


@dataclass(slots=True)
class RowOrPanel:
    panel: Panel
    collapsed: bool = False
    panels: List[Panel] = field(default_factory=list)

    @property
    def is_row(self) -> bool:
        return self.panel.type == "row"

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "RowOrPanel":
        nested = data.get("panels") or []
        return cls(
            panel=Panel.from_json(data),
            collapsed=bool(data.get("collapsed", False)),
            panels=[Panel.from_json(item) for item in nested if isinstance(item, Mapping)],
        )


@dataclass(slots=True)
class DashboardModel:
    """Dashboard JSON model as served by the dashboards API."""

    uid: str
    title: str = ""
    description: str = ""
    rows_or_panels: List[RowOrPanel] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: bytes | str | Mapping[str, Any]) -> "DashboardModel":
        if isinstance(raw, Mapping):
            document = raw
        else:
            try:
                document = json.loads(raw)
            except ValueError as exc:
                raise DashboardModelError(f"error reading dashboard model: {exc}") from exc
        if not isinstance(document, Mapping) or not isinstance(document.get("dashboard"), Mapping):
            raise DashboardModelError("no dashboard model found in API response")
        dashboard = document["dashboard"]
        return cls(
            uid=str(dashboard.get("uid", "") or ""),
            title=str(dashboard.get("title", "") or ""),
            description=str(dashboard.get("description", "") or ""),
            rows_or_panels=[
                RowOrPanel.from_json(item) for item in dashboard.get("panels") or [] if isinstance(item, Mapping)
            ],
        )

    def panels(self, mode: str = "default") -> List[Panel]:
        """Flatten rows into panels.

        Panels of collapsed rows carry a Y position relative to their row. In
        ``full`` mode they are re-based below the last panel that precedes the
        row; in ``default`` mode collapsed rows are skipped entirely.
        """

        panels: List[Panel] = []
        global_y = 0.0
        global_height = 0.0
        for item in self.rows_or_panels:
            if not item.is_row:
                global_y = item.panel.grid_pos.y
                global_height = item.panel.grid_pos.h
                panels.append(item.panel)
                continue
            if mode == "default" and item.collapsed:
                continue
            start_y = 0.0
            for index, nested in enumerate(item.panels):
                if index == 0:
                    start_y = nested.grid_pos.y
                if item.collapsed:
                    nested.grid_pos.y = nested.grid_pos.y - start_y + global_y + global_height
                if index == len(item.panels) - 1:
                    global_y = nested.grid_pos.y
                    global_height = nested.grid_pos.h
                panels.append(nested)
        return panels

    def lookup(self, identifier: str) -> Optional[Panel]:
        """Find the JSON panel matching an extracted panel ID."""

        wanted = _bare_id(identifier)
        for item in self.rows_or_panels:
            for candidate in [item.panel, *item.panels]:
                if candidate.id and _bare_id(candidate.id) == wanted:
                    return candidate
        return None


def enrich_panels(panels: Sequence[Panel], model: DashboardModel) -> None:
    """Copy type and repeat settings from the JSON model onto extracted panels."""

    for panel in panels:
        source = model.lookup(panel.id)
        if source is None:
            continue
        if not panel.type:
            panel.type = source.type
        if panel.repeat is None:
            panel.repeat = source.repeat
        if not panel.title:
            panel.title = source.title


def variables_values(variables: Mapping[str, Sequence[str]]) -> str:
    """Render ``var-*`` template variables as ``name=v1,v2; ...``."""

    values = []
    for key, items in variables.items():
        if key.startswith("var-"):
            values.append(f"{key[len('var-'):]}={','.join(items)}")
    return "; ".join(values)


@dataclass(slots=True)
class Dashboard:
    """Dashboard snapshot for a single render request."""

    uid: str
    title: str
    variables: Variables = field(default_factory=dict)
    panels: List[Panel] = field(default_factory=list)
    time_range: TimeRange = field(default_factory=TimeRange)
    description: str = ""

    def variables_values(self) -> str:
        return variables_values(self.variables)


__all__ = [
    "CSVData",
    "Dashboard",
    "DashboardModel",
    "GRID_COLUMNS",
    "GridPos",
    "Panel",
    "PanelImage",
    "RowOrPanel",
    "Variables",
    "base_panel_id",
    "enrich_panels",
    "panel_id",
    "variables_values",
]
