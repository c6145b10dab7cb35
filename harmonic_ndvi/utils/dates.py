"""Calendar-aware date helpers for the acquisition time coordinate."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

import numpy as np
import pandas as pd

__all__ = [
    "DateRange",
    "add_years",
    "fractional_years",
    "parse_date",
    "to_timestamp",
]


def to_timestamp(value) -> pd.Timestamp:
    """Coerce str/date/datetime/np.datetime64 into a naive UTC ``pd.Timestamp``."""
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        raise ValueError(f"cannot interpret {value!r} as a timestamp")
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def parse_date(value) -> date:
    """Coerce a date-like value (e.g. '2014', '2014-06-01') to ``datetime.date``."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return to_timestamp(value).date()


def add_years(anchor: pd.Timestamp, years: int) -> pd.Timestamp:
    """Shift ``anchor`` by whole calendar years; Feb 29 falls back to Feb 28."""
    try:
        return anchor.replace(year=anchor.year + years)
    except ValueError:
        return anchor.replace(year=anchor.year + years, day=28)


def fractional_years(timestamp, epoch) -> float:
    """
    Fractional years elapsed from ``epoch`` to ``timestamp``.

    Whole anniversaries of the epoch are counted first; the remainder is the
    elapsed fraction of the enclosing anniversary year, so leap years are 366
    days long. Timestamps before the epoch give negative values.
    """
    ts = to_timestamp(timestamp)
    origin = to_timestamp(epoch)

    whole = ts.year - origin.year
    anchor = add_years(origin, whole)
    if anchor > ts:
        whole -= 1
        anchor = add_years(origin, whole)
    following = add_years(origin, whole + 1)

    elapsed = (ts - anchor) / pd.Timedelta(seconds=1)
    span = (following - anchor) / pd.Timedelta(seconds=1)
    return float(whole + elapsed / span)


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __post_init__(self):
        object.__setattr__(self, "start", parse_date(self.start))
        object.__setattr__(self, "end", parse_date(self.end))
        if self.end < self.start:
            raise ValueError(f"end {self.end} precedes start {self.start}")

    def contains(self, timestamp) -> bool:
        day = to_timestamp(timestamp).date()
        return self.start <= day <= self.end

    def mask(self, timestamps) -> np.ndarray:
        """Vectorised ``contains`` over a sequence of timestamps."""
        return np.array([self.contains(ts) for ts in timestamps], dtype=bool)
