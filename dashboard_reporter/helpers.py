"""Small helpers shared across the reporter."""
from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Iterator

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"(\d+)")


def _natural_key(value: str) -> list[Any]:
    return [(0, int(part)) if part.isdigit() else (1, part) for part in _NUMBER_RE.split(value) if part]


def semver_compare(a: str, b: str) -> int:
    """Compare two version strings, returning -1, 0 or 1.

    A pre-release (``11.3.0-beta``) sorts before its release and numeric parts
    compare numerically. A leading ``v`` and ``+build`` metadata are ignored.
    """

    a = a.lstrip("v").split("+", 1)[0]
    b = b.lstrip("v").split("+", 1)[0]
    if a.startswith(b + "-"):
        return -1
    if b.startswith(a + "-"):
        return 1
    left, right = _natural_key(a), _natural_key(b)
    if left == right:
        return 0
    return -1 if left < right else 1


@contextmanager
def time_track(name: str, log: logging.Logger | None = None, **fields: Any) -> Iterator[None]:
    """Log the duration of the wrapped block at DEBUG level."""

    started = time.monotonic()
    try:
        yield
    finally:
        elapsed = time.monotonic() - started
        extra = " ".join(f"{key}={value}" for key, value in fields.items())
        (log or logger).debug("%s took %.3fs %s", name, elapsed, extra)


__all__ = ["semver_compare", "time_track"]
