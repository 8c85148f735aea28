"""Reader for DevTools IO stream handles."""
from __future__ import annotations

import base64
import io
import logging
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class CDPStreamReader(io.RawIOBase):
    """File-like view of a stream returned with ``transferMode=ReturnAsStream``.

    ``session`` is a Playwright ``CDPSession`` and must be used from the
    thread that owns the tab it belongs to.
    """

    def __init__(self, session: Any, handle: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        super().__init__()
        self._session = session
        self._handle = handle
        self._chunk_size = chunk_size
        self._pending = b""
        self._eof = False

    def readable(self) -> bool:
        return True

    def _fetch(self, size: int) -> None:
        response = self._session.send("IO.read", {"handle": self._handle, "size": size})
        data = response.get("data", "")
        if response.get("base64Encoded"):
            self._pending += base64.b64decode(data)
        else:
            self._pending += data.encode("utf-8")
        self._eof = bool(response.get("eof"))

    def readinto(self, buffer: Any) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        view = memoryview(buffer).cast("B")
        while not self._pending and not self._eof:
            self._fetch(max(len(view), self._chunk_size))
        if not self._pending:
            return 0
        count = min(len(view), len(self._pending))
        view[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        return count

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._session.send("IO.close", {"handle": self._handle})
        except Exception as exc:
            logger.warning("failed to close stream %s: %s", self._handle, exc)
        finally:
            super().close()


__all__ = ["CDPStreamReader"]
