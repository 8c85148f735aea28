"""Report assembly: panels in, PDF out."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

import requests
from jinja2 import Environment, FileSystemLoader

from .browser import BrowserInstance, PDFOptions, new_instance
from .client import DashboardClient, auth_headers, new_session
from .config import ReporterConfig
from .errors import OperationCancelled, PanelRenderError, ReportGenerationError, ReporterError
from .export_utils import build_report_filename
from .extractor import DashboardExtractor, load_panels_js
from .helpers import time_track
from .models import Dashboard, Panel, Variables, base_panel_id, enrich_panels
from .renderer import PanelRenderer
from .timerange import TimeRange
from .worker import BROWSER, RENDERER, Pools, new_pools

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

# request query parameters, see ReporterConfig.apply_overrides
Overrides = Mapping[str, Sequence[str]]

# base64 prefixes of common file types
SIGNATURES = {
    "JVBERi0": "application/pdf",
    "R0lGODdh": "image/gif",
    "R0lGODlh": "image/gif",
    "iVBORw0KGgo": "image/png",
    "/9j/": "image/jpg",
    "Qk02U": "image/bmp",
}


def embed(content: str) -> str:
    """Turn base64 content into a data URI when its type is recognised."""

    for signature, mime_type in SIGNATURES.items():
        if content.startswith(signature):
            return f"data:{mime_type};base64,{content}"
    return content


def select_panels(
    panels: Sequence[Panel],
    include_ids: Sequence[str],
    exclude_ids: Sequence[str],
    default_include: bool,
) -> List[int]:
    """Return indexes of panels to render, exclusions winning over inclusions."""

    include = list(include_ids)
    if not include and default_include:
        include = [base_panel_id(panel.id) for panel in panels]
    excluded = set(exclude_ids)
    selected: List[int] = []
    for index, panel in enumerate(panels):
        key = panel.id
        try:
            int(key)
        except ValueError:
            key = base_panel_id(key)
        if key in include and key not in excluded:
            selected.append(index)
    return selected


def normalize_variables(variables: Mapping[str, object] | None) -> Variables:
    normalized: Variables = {}
    for key, value in (variables or {}).items():
        if isinstance(value, (list, tuple)):
            normalized[str(key)] = [str(item) for item in value]
        else:
            normalized[str(key)] = [str(value)]
    return normalized


def _logo(encoded: str) -> str:
    # a data URI carries a "data:<mime>;base64," header
    parts = encoded.split(",")
    return parts[1] if len(parts) == 2 else encoded


@dataclass(slots=True)
class ReportHTML:
    header: str
    body: str
    footer: str


class HTMLRenderer:
    """Renders report body, header and footer with Jinja2."""

    def __init__(self, config: ReporterConfig, templates_dir: Path = TEMPLATES_DIR) -> None:
        self._config = config
        self._env = Environment(loader=FileSystemLoader(str(templates_dir)), autoescape=True)
        self._env.filters["embed"] = embed

    def _template(self, name: str, override: str):
        if override:
            return self._env.from_string(override)
        return self._env.get_template(name)

    def render(self, dashboard: Dashboard, failed: Set[str] = frozenset(), now: Optional[datetime] = None) -> ReportHTML:
        config = self._config
        now = now or datetime.now(config.location)
        context = {
            "date": now.astimezone(config.location).strftime(config.time_format),
            "title": dashboard.title,
            "description": dashboard.description,
            "from_": dashboard.time_range.from_formatted(config.location, config.time_format),
            "to": dashboard.time_range.to_formatted(config.location, config.time_format),
            "variables": dashboard.variables_values(),
            "logo": _logo(config.encoded_logo),
            "theme": config.theme,
            "orientation": config.orientation,
            "is_grid_layout": config.layout == "grid",
            "panels": dashboard.panels,
            "failed": failed,
            "conf": config,
        }
        return ReportHTML(
            header=self._template("header.html", config.header_template).render(context),
            body=self._env.get_template("report.html").render(context),
            footer=self._template("footer.html", config.footer_template).render(context),
        )


class Reporter:
    """Process wide service turning dashboards into PDF reports.

    Owns the browser instance, the browser and renderer pools and one HTTP
    session. All of them are shared by concurrent requests.
    """

    def __init__(
        self,
        config: ReporterConfig,
        instance: Optional[BrowserInstance] = None,
        pools: Optional[Pools] = None,
        session: Optional[requests.Session] = None,
        instance_factory: Callable[[ReporterConfig], BrowserInstance] = new_instance,
    ) -> None:
        self._config = config
        self._instance = instance
        self._instance_factory = instance_factory
        self._instance_lock = threading.Lock()
        self._pools = pools or new_pools(config.max_browser_workers, config.max_render_workers)
        self._session = session or new_session(config)
        self._client = DashboardClient(config, self._session)
        self._js = load_panels_js()
        logger.info("reporter configured: %s", config.describe())

    @property
    def config(self) -> ReporterConfig:
        return self._config

    @property
    def instance(self) -> BrowserInstance:
        with self._instance_lock:
            if self._instance is None:
                self._instance = self._instance_factory(self._config)
                logger.info("started %s browser instance", self._instance.name)
            return self._instance

    def _request_config(self, overrides: Optional[Overrides]) -> ReporterConfig:
        if not overrides:
            return self._config
        return self._config.apply_overrides(overrides)

    def _extractor(self, config: ReporterConfig) -> DashboardExtractor:
        return DashboardExtractor(self.instance, config, self._js)

    def _renderer(self, config: ReporterConfig) -> PanelRenderer:
        return PanelRenderer(self.instance, config, self._session, self._js)

    @staticmethod
    def _browser_headers(headers: Mapping[str, str], config: ReporterConfig) -> Dict[str, str]:
        merged = dict(headers)
        merged.update(config.custom_http_headers)
        return merged

    def extract_panels(
        self,
        uid: str,
        variables: Mapping[str, object] | None = None,
        mode: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
        headers: Optional[Mapping[str, str]] = None,
        overrides: Optional[Overrides] = None,
    ) -> List[Panel]:
        """Panels of a dashboard with grid geometry as laid out in the browser."""

        config = self._request_config(overrides)
        extractor = self._extractor(config)
        browser_headers = self._browser_headers(auth_headers(config, headers), config)
        future = self._pools[BROWSER].submit(
            lambda: extractor.extract(uid, normalize_variables(variables), mode, browser_headers, cancel),
            cancel,
        )
        return future.result()

    def generate_report(
        self,
        uid: str,
        time_range: TimeRange,
        variables: Mapping[str, object] | None,
        sink: BinaryIO,
        cancel: Optional[threading.Event] = None,
        headers: Optional[Mapping[str, str]] = None,
        overrides: Optional[Overrides] = None,
    ) -> str:
        """Write the PDF report of a dashboard into ``sink`` and return its file name.

        ``overrides`` holds request query parameters such as ``theme``, ``layout``
        or ``includePanelID`` that apply to this report only.
        """

        # unparseable time specs fail before any browser work
        time_range.resolve_from()
        time_range.resolve_to()

        config = self._request_config(overrides)
        request_headers = auth_headers(config, headers)
        values = normalize_variables(variables)
        values["from"] = [time_range.from_]
        values["to"] = [time_range.to]

        with time_track("report generation", logger, uid=uid):
            dashboard = self._dashboard(uid, time_range, values, request_headers, cancel, config)
            failed = self._populate_panels(dashboard, request_headers, cancel, config)
            html = HTMLRenderer(config).render(dashboard, failed)
            self._render_pdf(html, sink, cancel, config.orientation)
        return build_report_filename(dashboard.title)

    def _dashboard(
        self,
        uid: str,
        time_range: TimeRange,
        values: Variables,
        headers: Dict[str, str],
        cancel: Optional[threading.Event],
        config: ReporterConfig,
    ) -> Dashboard:
        extractor = self._extractor(config)
        browser_headers = self._browser_headers(headers, config)
        with time_track("dashboard data", logger, uid=uid):
            model_future = self._pools[RENDERER].submit(
                lambda: self._client.dashboard_model(uid, headers, cancel), cancel
            )
            panels_future = self._pools[BROWSER].submit(
                lambda: extractor.extract(uid, values, None, browser_headers, cancel), cancel
            )
            model = model_future.result()
            try:
                panels = panels_future.result()
            except ReporterError as exc:
                if isinstance(exc, OperationCancelled) or config.on_partial_failure == "abort":
                    raise
                logger.error("error collecting panels from browser, using dashboard model: %s", exc)
                panels = model.panels(config.dashboard_mode)
            else:
                enrich_panels(panels, model)
        return Dashboard(
            uid=uid,
            title=model.title,
            variables=values,
            panels=panels,
            time_range=time_range,
            description=model.description,
        )

    def _populate_panels(
        self,
        dashboard: Dashboard,
        headers: Dict[str, str],
        cancel: Optional[threading.Event],
        config: ReporterConfig,
    ) -> Set[str]:
        """Fetch images and data of the selected panels; return IDs that failed."""

        renderer = self._renderer(config)
        browser_headers = self._browser_headers(headers, config)
        png_panels = select_panels(dashboard.panels, config.include_panel_ids, config.exclude_panel_ids, True)
        csv_panels = select_panels(dashboard.panels, config.include_panel_data_ids, [], False)

        jobs: List[Tuple[Panel, str, Future]] = []
        with time_track("panel PNGs and/or data generation", logger, panels=len(dashboard.panels)):
            for index in png_panels:
                panel = dashboard.panels[index]
                future = self._pools[RENDERER].submit(
                    lambda panel=panel: renderer.panel_png(dashboard, panel, headers, cancel), cancel
                )
                jobs.append((panel, "PNG", future))
            for index in csv_panels:
                panel = dashboard.panels[index]
                future = self._pools[BROWSER].submit(
                    lambda panel=panel: renderer.panel_csv(dashboard, panel, browser_headers, cancel), cancel
                )
                jobs.append((panel, "CSV", future))

            errors: List[Exception] = []
            failed: Set[str] = set()
            for panel, kind, future in jobs:
                try:
                    result = future.result()
                except Exception as exc:
                    if not isinstance(exc, PanelRenderError):
                        wrapped = PanelRenderError(panel.id, kind, str(exc))
                        wrapped.__cause__ = exc
                        exc = wrapped
                    errors.append(exc)
                    failed.add(panel.id)
                    continue
                if kind == "PNG":
                    panel.attach_image(result)
                else:
                    panel.attach_csv(result)

        if cancel is not None and cancel.is_set():
            raise OperationCancelled("request cancelled while rendering panels")
        if errors:
            if config.on_partial_failure == "abort":
                raise ReportGenerationError(errors)
            for err in errors:
                logger.error("panel left out of report: %s", err)
        return failed

    def _render_pdf(
        self, html: ReportHTML, sink: BinaryIO, cancel: Optional[threading.Event], orientation: str
    ) -> None:
        with time_track("pdf rendering", logger):
            with self.instance.new_tab(cancel=cancel) as tab:
                tab.print_to_pdf_into(
                    PDFOptions(
                        header=html.header,
                        body=html.body,
                        footer=html.footer,
                        orientation=orientation,
                    ),
                    sink,
                )

    def close(self) -> None:
        for pool in self._pools.values():
            pool.shutdown()
        with self._instance_lock:
            instance, self._instance = self._instance, None
        if instance is not None:
            try:
                instance.close()
            except Exception as exc:
                logger.error("failed to close browser instance: %s", exc)
        self._session.close()

    def __enter__(self) -> "Reporter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = [
    "HTMLRenderer",
    "ReportHTML",
    "Reporter",
    "embed",
    "normalize_variables",
    "select_panels",
]
