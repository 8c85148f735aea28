"""Browser already running elsewhere."""
from __future__ import annotations

import logging
from typing import Sequence

from . import BrowserInstance

logger = logging.getLogger(__name__)


class RemoteBrowserInstance(BrowserInstance):
    """Hands out tabs on a browser reachable at a DevTools URL.

    The remote process is not ours, so closing only forgets the address.
    """

    def __init__(self, url: str, ignore_https_errors: bool = False, blocked_urls: Sequence[str] = ()) -> None:
        super().__init__(ignore_https_errors=ignore_https_errors, blocked_urls=blocked_urls)
        self._url = url
        logger.info("using remote browser at %s", url)

    @property
    def name(self) -> str:
        return "remote"

    @property
    def endpoint(self) -> str:
        return self._url

    def close(self) -> None:
        logger.debug("released remote browser %s", self._url)


__all__ = ["RemoteBrowserInstance"]
