"""Time range resolution.

A request's time range is resolved exactly once, before any SQL node runs,
into UTC bounds that are bound as ``__timeFrom`` / ``__timeTo``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from graphpipe.core.parameters import coerce_timestamp
from graphpipe.errors import TimeRangeError

TIME_FROM_PARAM = "__timeFrom"
TIME_TO_PARAM = "__timeTo"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

NAMED_RANGES: Dict[str, Optional[timedelta]] = {
    "1h": timedelta(hours=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "180d": timedelta(days=180),
    "365d": timedelta(days=365),
    "all": None,
}

UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}

_RELATIVE = re.compile(r"^now(?:\s*([+-])\s*(\d+)\s*([smhdw]))?$")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResolvedTimeRange:
    """Concrete bounds for one request."""

    start: datetime
    end: datetime
    unbounded: bool = False

    def bind_params(self) -> Dict[str, datetime]:
        return {TIME_FROM_PARAM: self.start, TIME_TO_PARAM: self.end}

    def to_dict(self) -> dict:
        return {"from": self.start.isoformat(), "to": self.end.isoformat(), "unbounded": self.unbounded}

    def __str__(self) -> str:
        suffix = " (unbounded)" if self.unbounded else ""
        return f"[{self.start.isoformat()}, {self.end.isoformat()}]{suffix}"


class TimeRangeResolver:
    """
    Resolve named and custom time ranges.

    The clock is injected so tests can pin ``now``.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or utc_now

    def resolve(
        self,
        range_name: Optional[str] = "7d",
        custom_from: Optional[Any] = None,
        custom_to: Optional[Any] = None,
        *,
        disabled: bool = False,
    ) -> ResolvedTimeRange:
        """
        Resolve a selector into UTC bounds.

        Args:
            range_name: One of the named ranges, "custom", or None (treated as "all")
            custom_from: Absolute or relative start, required for "custom"
            custom_to: Absolute or relative end, defaults to now for "custom"
            disabled: Visualization opted out of time filtering

        Returns:
            ResolvedTimeRange with aware UTC bounds

        Raises:
            TimeRangeError: Unknown range name or unparseable bounds
        """
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        if disabled or range_name is None or range_name == "all":
            return ResolvedTimeRange(start=EPOCH, end=now, unbounded=True)

        if range_name == "custom":
            if custom_from is None:
                raise TimeRangeError("Custom time range requires 'from'")
            start = parse_time_bound(custom_from, now)
            end = parse_time_bound(custom_to, now) if custom_to is not None else now
            if start >= end:
                raise TimeRangeError(
                    f"Time range start {start.isoformat()} must be before end {end.isoformat()}",
                    value={"from": str(custom_from), "to": str(custom_to)},
                )
            return ResolvedTimeRange(start=start, end=end)

        if range_name not in NAMED_RANGES:
            raise TimeRangeError(
                f"Unknown time range '{range_name}', expected one of "
                f"{', '.join(NAMED_RANGES)} or custom",
                value=range_name,
            )

        return ResolvedTimeRange(start=now - NAMED_RANGES[range_name], end=now)


def parse_time_bound(value: Any, now: datetime) -> datetime:
    """Parse ``now``, ``now-6h``, ``now+15m`` or an absolute timestamp."""
    if isinstance(value, str):
        text = value.strip()
        match = _RELATIVE.match(text)
        if match:
            sign, amount, unit = match.groups()
            if sign is None:
                return now
            try:
                delta = timedelta(seconds=int(amount) * UNIT_SECONDS[unit])
                return now - delta if sign == "-" else now + delta
            except (OverflowError, ValueError):
                raise TimeRangeError(f"Invalid time bound: {value!r}", value=str(value)) from None

    parsed = coerce_timestamp(value)
    if parsed is None:
        raise TimeRangeError(f"Invalid time bound: {value!r}", value=str(value))
    return parsed
