"""Configuration models for the dashboard reporter."""
from __future__ import annotations

import copy
import dataclasses
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .errors import ConfigError
from .helpers import semver_compare

logger = logging.getLogger(__name__)

ENV_PREFIX = "REPORTER_"
DEFAULT_TIME_FORMAT = "%a %b %d %H:%M:%S %Z %Y"

VALID_THEMES = ("light", "dark")
VALID_LAYOUTS = ("simple", "grid")
VALID_ORIENTATIONS = ("portrait", "landscape")
VALID_MODES = ("default", "full")
VALID_FAILURE_POLICIES = ("abort", "degrade")


def _expand(path: Optional[str]) -> Optional[Path]:
    if not path:
        return None
    return Path(path).expanduser().resolve()


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def convert_panel_ids(ids: Sequence[str], app_version: str) -> List[str]:
    """Return panel IDs as keyed by the given app version.

    From 11.3.0 panels are addressed as ``panel-<n>`` instead of ``<n>``.
    """

    if semver_compare(app_version or "v0.0.0", "v11.3.0") == -1:
        return list(ids)
    return [item if item.startswith("panel") else f"panel-{item}" for item in ids]


@dataclass(slots=True)
class ReporterConfig:
    """Main settings of the reporter."""

    app_url: str = ""
    app_version: str = ""
    api_token: str = ""
    custom_http_headers: Dict[str, str] = field(default_factory=dict)
    skip_tls_check: bool = False
    theme: str = "light"
    orientation: str = "portrait"
    layout: str = "simple"
    dashboard_mode: str = "default"
    time_zone: str = ""
    time_format: str = DEFAULT_TIME_FORMAT
    encoded_logo: str = ""
    header_template: str = ""
    footer_template: str = ""
    header_template_file: Optional[Path] = None
    footer_template_file: Optional[Path] = None
    max_browser_workers: int = 2
    max_render_workers: int = 2
    remote_chrome_url: str = ""
    chrome_executable: Optional[Path] = None
    native_renderer: bool = False
    include_panel_ids: List[str] = field(default_factory=list)
    exclude_panel_ids: List[str] = field(default_factory=list)
    include_panel_data_ids: List[str] = field(default_factory=list)
    http_timeout: float = 30.0
    retry_delay: float = 10.0
    blocked_urls: List[str] = field(default_factory=list)
    on_partial_failure: str = "abort"
    location: tzinfo = field(default_factory=lambda: datetime.now().astimezone().tzinfo, repr=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ReporterConfig":
        config = cls()
        config.update(data)
        return config

    @classmethod
    def from_yaml(cls, file: Path) -> "ReporterConfig":
        data = yaml.safe_load(Path(file).read_text(encoding="utf-8")) or {}
        if not isinstance(data, Mapping):
            raise ConfigError(f"configuration file {file} must contain a mapping")
        return cls.from_mapping(data)

    def update(self, data: Mapping[str, Any]) -> None:
        """Set fields from a mapping of snake_case keys, coercing value types."""

        names = {item.name: item for item in dataclasses.fields(self) if item.name != "location"}
        for key, value in data.items():
            spec = names.get(key)
            if spec is None:
                logger.warning("ignoring unknown configuration key %s", key)
                continue
            setattr(self, key, self._coerce(key, value, getattr(self, key)))

    @staticmethod
    def _coerce(key: str, value: Any, current: Any) -> Any:
        if key in ("header_template_file", "footer_template_file", "chrome_executable"):
            return _expand(value)
        if key == "custom_http_headers":
            if isinstance(value, str):
                pairs = [item.split("=", 1) for item in value.split(",") if "=" in item]
                return {name.strip(): header.strip() for name, header in pairs}
            return {str(name): str(header) for name, header in (value or {}).items()}
        if isinstance(current, bool):
            return _as_bool(value)
        if isinstance(current, int):
            try:
                return int(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{key}: {value!r} is not an integer") from exc
        if isinstance(current, float):
            try:
                return float(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{key}: {value!r} is not a number") from exc
        if isinstance(current, list):
            return _as_list(value)
        return "" if value is None else str(value)

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> None:
        """Override fields from ``REPORTER_<FIELD>`` environment variables."""

        environ = os.environ if environ is None else environ
        overrides = {}
        for item in dataclasses.fields(self):
            if item.name == "location":
                continue
            name = ENV_PREFIX + item.name.upper()
            if name in environ:
                overrides[item.name] = environ[name]
        self.update(overrides)

    def apply_overrides(self, params: Mapping[str, Sequence[str]]) -> "ReporterConfig":
        """Return a copy with per-request query parameters applied."""

        config = copy.deepcopy(self)

        def first(name: str) -> Optional[str]:
            values = params.get(name)
            return values[0] if values else None

        for param, attr in (
            ("theme", "theme"),
            ("layout", "layout"),
            ("orientation", "orientation"),
            ("dashboardMode", "dashboard_mode"),
            ("timeZone", "time_zone"),
            ("timeFormat", "time_format"),
        ):
            value = first(param)
            if value is not None:
                setattr(config, attr, value)
        # "timezone" is what newer app versions send themselves
        zone = first("timezone")
        if zone is not None and zone not in ("browser", "default"):
            config.time_zone = "Etc/UTC" if zone == "utc" else zone
        for param, attr in (
            ("includePanelID", "include_panel_ids"),
            ("excludePanelID", "exclude_panel_ids"),
            ("includePanelDataID", "include_panel_data_ids"),
        ):
            if params.get(param):
                setattr(config, attr, convert_panel_ids(list(params[param]), config.app_version))
        config.validate_runtime()
        return config

    def validate_runtime(self) -> None:
        for name, value, valid in (
            ("theme", self.theme, VALID_THEMES),
            ("layout", self.layout, VALID_LAYOUTS),
            ("orientation", self.orientation, VALID_ORIENTATIONS),
            ("dashboard mode", self.dashboard_mode, VALID_MODES),
            ("on_partial_failure", self.on_partial_failure, VALID_FAILURE_POLICIES),
        ):
            if value not in valid:
                raise ConfigError(f"{name}: {value} must be one of [{','.join(valid)}]")

        self.location = self._load_location()
        try:
            rendered = datetime.now().strftime(self.time_format)
        except ValueError:
            rendered = ""
        if not self.time_format or "%" not in self.time_format or not rendered:
            self.time_format = DEFAULT_TIME_FORMAT

    def _load_location(self) -> tzinfo:
        if self.time_zone:
            try:
                zone = ZoneInfo(self.time_zone)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning("unknown time zone %s, using server time zone", self.time_zone)
            else:
                return zone
        local = datetime.now().astimezone().tzinfo
        self.time_zone = str(local)
        return local

    def validate(self) -> "ReporterConfig":
        """Check settings, resolve defaults and load template files."""

        self.validate_runtime()

        if self.remote_chrome_url:
            parsed = urlparse(self.remote_chrome_url)
            if not parsed.scheme or not parsed.netloc:
                raise ConfigError("remote chrome url is invalid")

        if self.header_template and self.header_template_file:
            raise ConfigError("header_template and header_template_file are mutually exclusive")
        if self.footer_template and self.footer_template_file:
            raise ConfigError("footer_template and footer_template_file are mutually exclusive")

        # once loaded the file setting is cleared so validate can run again
        if self.header_template_file:
            self.header_template = self._read_template(self.header_template_file, "header_template_file")
            self.header_template_file = None
        if self.footer_template_file:
            self.footer_template = self._read_template(self.footer_template_file, "footer_template_file")
            self.footer_template_file = None

        if not self.app_version:
            self.app_version = "v0.0.0"
        elif not self.app_version.startswith("v"):
            self.app_version = f"v{self.app_version}"
        self.app_url = self.app_url.rstrip("/")
        return self

    @staticmethod
    def _read_template(path: Path, name: str) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"failed to read {name} at {path}: {exc}") from exc

    def describe(self) -> str:
        """Summary suitable for logs. Secrets and the logo are not included."""

        return (
            f"Theme: {self.theme}; Orientation: {self.orientation}; Layout: {self.layout}; "
            f"Dashboard Mode: {self.dashboard_mode}; Time Zone: {self.time_zone}; "
            f"Time Format: {self.time_format}; Encoded Logo: {'[truncated]' if self.encoded_logo else ''}; "
            f"Max Renderer Workers: {self.max_render_workers}; Max Browser Workers: {self.max_browser_workers}; "
            f"Remote Chrome Addr: {self.remote_chrome_url}; App URL: {self.app_url or 'unset'}; "
            f"TLS Skip verify: {self.skip_tls_check}; "
            f"Included Panel IDs: {','.join(self.include_panel_ids) or 'all'}; "
            f"Excluded Panel IDs: {','.join(self.exclude_panel_ids) or 'none'}; "
            f"Included Data for Panel IDs: {','.join(self.include_panel_data_ids) or 'none'}; "
            f"Native Renderer: {self.native_renderer}; Client Timeout: {int(self.http_timeout)}; "
            f"On Partial Failure: {self.on_partial_failure}"
        )

    __str__ = describe


def load_config(file: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> ReporterConfig:
    config = ReporterConfig.from_yaml(file) if file else ReporterConfig()
    config.apply_env(environ)
    return config


__all__ = [
    "DEFAULT_TIME_FORMAT",
    "ENV_PREFIX",
    "ReporterConfig",
    "convert_panel_ids",
    "load_config",
]
