"""Resolution of dashboard time specifications.

Supported forms:

* ``now``
* relative: ``now-1h``, ``now+2d``, ``now-3w``, ``now-5M``, ``now-1y``
* boundary: ``now/d``, ``now-1d/d``, ``now/w``, ``now/M``, ``now/y``. The same
  string resolves to the start of the unit when used as ``from`` and to the
  end of the unit (start of the next one) when used as ``to``.
* absolute: unix milliseconds (``1453206447000``) or ``2024-12-02T23:00:00.000Z``
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional

from .errors import TimeParseError

RELATIVE_RE = re.compile(r"^now([+-][0-9]+)([mhdwMy])$")
BOUNDARY_RE = re.compile(r"^(.*?)/([dwMy])$")
ABSOLUTE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

DEFAULT_FROM = "now-1h"
DEFAULT_TO = "now"


class Boundary(enum.Enum):
    FROM = "from"
    TO = "to"


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _go_weekday(moment: datetime) -> int:
    # Sunday is 0, Saturday is 6
    return (moment.weekday() + 1) % 7


def _normalized(year: int, month: int, day: int, tz: Optional[tzinfo]) -> datetime:
    """Build midnight of a date whose month and day may overflow."""

    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return datetime(year, month, 1, tzinfo=tz) + timedelta(days=day - 1)


def add_date(moment: datetime, years: int = 0, months: int = 0, days: int = 0) -> datetime:
    """Calendar arithmetic which normalises overflowing days (Jan 31 + 1M = Mar 3)."""

    base = _normalized(moment.year + years, moment.month + months, moment.day + days, moment.tzinfo)
    return base.replace(
        hour=moment.hour,
        minute=moment.minute,
        second=moment.second,
        microsecond=moment.microsecond,
    )


def round_to_boundary(moment: datetime, boundary: Boundary, unit: str) -> datetime:
    """Round ``moment`` to the start (``FROM``) or end (``TO``) of ``unit``."""

    shift = 1 if boundary is Boundary.TO else 0
    year, month, day = moment.year, moment.month, moment.day
    if unit == "d":
        day += shift
    elif unit == "w":
        weekday = _go_weekday(moment)
        if boundary is Boundary.TO:
            day += 1 + 6 - weekday
        else:
            day -= weekday
    elif unit == "M":
        day = 1
        month += shift
    elif unit == "y":
        day = 1
        month = 1
        year += shift
    return _normalized(year, month, day, moment.tzinfo)


def parse_absolute(spec: str) -> datetime:
    if re.fullmatch(r"[+-]?[0-9]+", spec):
        millis = int(spec)
        seconds = abs(millis) // 1000
        return datetime.fromtimestamp(seconds if millis >= 0 else -seconds, tz=timezone.utc)
    try:
        moment = datetime.strptime(spec, ABSOLUTE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise TimeParseError(spec) from None
    if moment.timestamp() <= 0:
        raise TimeParseError(spec)
    return moment


class _Resolver:
    """Resolves specs against one sampled instant of ``now``."""

    def __init__(self, now: datetime) -> None:
        self._now = now

    def resolve(self, spec: str, boundary: Boundary) -> datetime:
        match = BOUNDARY_RE.match(spec)
        if match is None:
            return self._moment(spec)
        moment = self._moment(match.group(1))
        return round_to_boundary(moment, boundary, match.group(2))

    def _moment(self, spec: str) -> datetime:
        if spec == "now":
            return self._now
        match = RELATIVE_RE.match(spec)
        if match is not None:
            return self._relative(int(match.group(1)), match.group(2))
        return parse_absolute(spec)

    def _relative(self, amount: int, unit: str) -> datetime:
        if unit in ("m", "h"):
            delta = timedelta(minutes=amount) if unit == "m" else timedelta(hours=amount)
            return (self._now.astimezone(timezone.utc) + delta).astimezone(self._now.tzinfo)
        if unit == "d":
            return add_date(self._now, days=amount)
        if unit == "w":
            return add_date(self._now, days=amount * 7)
        if unit == "M":
            return add_date(self._now, months=amount)
        return add_date(self._now, years=amount)


def resolve(spec: str, boundary: Boundary, now: Optional[datetime] = None) -> datetime:
    """Resolve a single time spec for the given boundary role."""

    resolver = _Resolver(now if now is not None else _local_now())
    try:
        return resolver.resolve(spec, boundary)
    except TimeParseError:
        raise
    except (OverflowError, OSError, ValueError) as exc:
        # well formed but outside the range datetime can represent
        raise TimeParseError(spec) from exc


@dataclass(frozen=True, slots=True)
class TimeRange:
    """Pair of unresolved time specifications."""

    from_: str = DEFAULT_FROM
    to: str = DEFAULT_TO

    @classmethod
    def create(cls, from_: str | None, to: str | None) -> "TimeRange":
        return cls(from_ or DEFAULT_FROM, to or DEFAULT_TO)

    def resolve_from(self, now: Optional[datetime] = None) -> datetime:
        return resolve(self.from_, Boundary.FROM, now)

    def resolve_to(self, now: Optional[datetime] = None) -> datetime:
        return resolve(self.to, Boundary.TO, now)

    def from_formatted(self, tz: tzinfo, fmt: str) -> str:
        return self.resolve_from().astimezone(tz).strftime(fmt)

    def to_formatted(self, tz: tzinfo, fmt: str) -> str:
        return self.resolve_to().astimezone(tz).strftime(fmt)


__all__ = [
    "Boundary",
    "DEFAULT_FROM",
    "DEFAULT_TO",
    "TimeRange",
    "add_date",
    "parse_absolute",
    "resolve",
    "round_to_boundary",
]
