"""Bucket interval parsing and window alignment.

Intervals use the Flux duration shorthand: ``<n>s``, ``<n>m``, ``<n>h``,
``<n>d``, ``<n>w``. Windows are aligned to the Unix epoch, like
``aggregateWindow`` does, so the same point always lands in the same bucket
regardless of the query range.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_INTERVAL_PATTERN = re.compile(r"^(\d+)(s|m|h|d|w)$")

_UNIT_SECONDS: dict[str, int] = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
}


def parse_interval(interval: str) -> timedelta:
    """Parse an interval string such as ``"1h"`` into a timedelta.

    Raises:
        ValueError: malformed or zero-length interval.
    """
    match = _INTERVAL_PATTERN.fullmatch(interval.strip().lower())
    if match is None:
        raise ValueError(
            f"Invalid interval {interval!r}: expected <n>s, <n>m, <n>h, <n>d or <n>w"
        )
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError(f"Interval must be positive: {interval!r}")
    return timedelta(seconds=amount * _UNIT_SECONDS[match.group(2)])


def bucket_start(moment: datetime, width: timedelta) -> datetime:
    """Start of the epoch-aligned window of ``width`` containing ``moment``."""
    offset = (moment - _EPOCH) // width
    return _EPOCH + offset * width
