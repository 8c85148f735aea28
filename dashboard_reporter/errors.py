"""Exception hierarchy of the dashboard reporter."""
from __future__ import annotations

from typing import Sequence


class ReporterError(Exception):
    """Base class for all reporter errors."""


class ConfigError(ReporterError, ValueError):
    """Raised when the configuration contains invalid values."""


class TimeParseError(ReporterError, ValueError):
    """Raised when a time specification cannot be recognised."""

    def __init__(self, spec: str) -> None:
        super().__init__(f"{spec} is not a recognised time format")
        self.spec = spec


class OperationCancelled(ReporterError):
    """Raised when the request owning an operation was cancelled."""


class PoolClosedError(ReporterError):
    """Raised when work is submitted to a pool that has been shut down."""


class BrowserError(ReporterError):
    """Base class for failures of the headless browser."""


class NavigationError(BrowserError):
    """Navigation failed or returned a non 2xx response."""

    def __init__(self, url: str, message: str, status: int | None = None) -> None:
        super().__init__(f"failed to navigate to {url}: {message}")
        self.url = url
        self.status = status


class ScriptError(BrowserError):
    """A script or scripted action failed inside a tab."""


class TabTimeoutError(BrowserError, TimeoutError):
    """A tab operation exceeded its timeout."""


class TabClosedError(BrowserError):
    """A closed tab was used again."""


class ExtractionError(ReporterError):
    """Base class for dashboard extraction failures."""


class NoPanelsError(ExtractionError):
    """The page loaded but holds nothing that can be rendered."""

    def __init__(self, message: str = "no panels found in browser data") -> None:
        super().__init__(message)


class NoExtractionDataError(ExtractionError):
    """The scraping script did not return any data."""

    def __init__(self, message: str = "javascript did not return any dashboard data") -> None:
        super().__init__(message)


class DashboardModelError(ReporterError):
    """The dashboard JSON model could not be used."""


class DashboardHTTPError(ReporterError):
    """An upstream request did not return 200 OK."""

    def __init__(self, url: str, status: int, body: str) -> None:
        super().__init__(f"dashboard request does not return 200 OK: URL: {url}. Status: {status}, message: {body}")
        self.url = url
        self.status = status
        self.body = body


class PanelRenderError(ReporterError):
    """Rendering the image or data of a single panel failed."""

    def __init__(self, panel_id: str, kind: str, message: str) -> None:
        super().__init__(f"failed to fetch {kind} data for panel {panel_id}: {message}")
        self.panel_id = panel_id
        self.kind = kind


class EmptyBlobURLError(PanelRenderError):
    """The CSV download did not expose a blob URL."""

    def __init__(self, panel_id: str, url: str) -> None:
        super().__init__(panel_id, "CSV", f"empty blob URL from {url}")


class EmptyCSVDataError(PanelRenderError):
    """The CSV blob was empty."""

    def __init__(self, panel_id: str, url: str) -> None:
        super().__init__(panel_id, "CSV", f"empty csv data from {url}")


class PanelDataAlreadySetError(ReporterError):
    """Image or tabular data was attached twice to the same panel."""


class ReportGenerationError(ReporterError):
    """One or more panels failed while the report was being populated."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        joined = "; ".join(str(err) for err in errors)
        super().__init__(f"failed to generate report: {joined}")
        self.errors = list(errors)


__all__ = [
    "BrowserError",
    "ConfigError",
    "DashboardHTTPError",
    "DashboardModelError",
    "EmptyBlobURLError",
    "EmptyCSVDataError",
    "ExtractionError",
    "NavigationError",
    "NoExtractionDataError",
    "NoPanelsError",
    "OperationCancelled",
    "PanelDataAlreadySetError",
    "PanelRenderError",
    "PoolClosedError",
    "ReportGenerationError",
    "ReporterError",
    "ScriptError",
    "TabClosedError",
    "TabTimeoutError",
    "TimeParseError",
]
