"""HTTP access to the dashboards API."""
from __future__ import annotations

import logging
import threading
from typing import Dict, Mapping, Optional

import requests

from .config import ReporterConfig
from .errors import DashboardHTTPError, DashboardModelError, OperationCancelled
from .helpers import time_track
from .models import DashboardModel

logger = logging.getLogger(__name__)


def new_session(config: ReporterConfig) -> requests.Session:
    session = requests.Session()
    session.verify = not config.skip_tls_check
    session.headers.update({"User-Agent": "dashboard-reporter"})
    return session


def auth_headers(config: ReporterConfig, headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Headers to forward upstream; request headers win over the token."""

    merged: Dict[str, str] = {}
    if config.api_token:
        merged["Authorization"] = f"Bearer {config.api_token}"
    merged.update(headers or {})
    return merged


class DashboardClient:
    def __init__(self, config: ReporterConfig, session: requests.Session) -> None:
        self._config = config
        self._session = session

    def dashboard_model(
        self,
        uid: str,
        headers: Optional[Mapping[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> DashboardModel:
        """Fetch and parse ``/api/dashboards/uid/<uid>``."""

        url = f"{self._config.app_url}/api/dashboards/uid/{uid}"
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"request cancelled before fetching {url}")
        with time_track("fetch dashboard model", logger, url=url):
            try:
                response = self._session.get(
                    url,
                    headers=dict(headers or {}),
                    timeout=self._config.http_timeout,
                    verify=not self._config.skip_tls_check,
                )
            except requests.RequestException as exc:
                raise DashboardModelError(f"error executing request for {url}: {exc}") from exc
        if response.status_code != 200:
            raise DashboardHTTPError(url, response.status_code, response.text)
        return DashboardModel.from_json(response.content)


__all__ = ["DashboardClient", "auth_headers", "new_session"]
