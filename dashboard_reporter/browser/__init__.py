"""Headless browser instances and tabs."""
from __future__ import annotations

import abc
import threading
from typing import Optional, Sequence

from .stream import CDPStreamReader
from .tab import DEFAULT_BLOCKED_URLS, PDFOptions, Tab


class BrowserInstance(abc.ABC):
    """A browser reachable over the DevTools protocol that hands out tabs."""

    def __init__(self, ignore_https_errors: bool = False, blocked_urls: Sequence[str] = ()) -> None:
        self._ignore_https_errors = ignore_https_errors
        self._blocked_urls = list(blocked_urls)

    @property
    @abc.abstractmethod
    def name(self) -> str:
        ...

    @property
    @abc.abstractmethod
    def endpoint(self) -> str:
        ...

    def new_tab(self, timeout: Optional[float] = None, cancel: Optional[threading.Event] = None) -> Tab:
        """Open a fresh isolated tab owned by the calling thread."""

        return Tab(
            self.endpoint,
            timeout=timeout,
            cancel=cancel,
            ignore_https_errors=self._ignore_https_errors,
            blocked_urls=self._blocked_urls,
        )

    @abc.abstractmethod
    def close(self) -> None:
        ...

    def __enter__(self) -> "BrowserInstance":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def new_instance(config) -> BrowserInstance:
    """Connect to the configured remote browser or start a local one."""

    if config.remote_chrome_url:
        from .remote import RemoteBrowserInstance

        return RemoteBrowserInstance(
            config.remote_chrome_url,
            ignore_https_errors=config.skip_tls_check,
            blocked_urls=config.blocked_urls,
        )
    from .local import LocalBrowserInstance

    return LocalBrowserInstance(
        executable=config.chrome_executable,
        skip_tls=config.skip_tls_check,
        blocked_urls=config.blocked_urls,
    )


__all__ = [
    "BrowserInstance",
    "CDPStreamReader",
    "DEFAULT_BLOCKED_URLS",
    "PDFOptions",
    "Tab",
    "new_instance",
]
