"""Timestamp formatting and the steady/wall capture clock."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_utc_timestamp(ts: datetime) -> str:
    """Render ``ts`` as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S") + f".{ts.microsecond // 1000:03d}Z"


def to_epoch_millis(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    delta = ts - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400_000) + (delta.seconds * 1000) + (delta.microseconds // 1000)


def from_epoch_millis(millis: int) -> datetime:
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=millis)


def to_epoch_micros(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    delta = ts - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400_000_000) + (delta.seconds * 1_000_000) + delta.microseconds


def from_epoch_micros(micros: int) -> datetime:
    return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(microseconds=micros)


def format_fixed(value: float, precision: int = 6) -> str:
    return f"{value:.{precision}f}"


@dataclass(frozen=True)
class CaptureClock:
    """Maps monotonic capture timestamps onto wall-clock time.

    One anchor pair per session; conversions are affine and never re-anchor,
    so NTP steps or suspend/resume do not distort cadence measurements.
    """

    wall_anchor: datetime
    steady_anchor_ns: int

    @classmethod
    def anchored(cls, wall_anchor: datetime, steady_anchor_ns: int) -> "CaptureClock":
        if wall_anchor.tzinfo is None:
            wall_anchor = wall_anchor.replace(tzinfo=timezone.utc)
        return cls(wall_anchor=wall_anchor, steady_anchor_ns=int(steady_anchor_ns))

    @classmethod
    def reset_to_now(cls) -> "CaptureClock":
        return cls.anchored(utc_now(), time.monotonic_ns())

    @staticmethod
    def now_steady() -> int:
        return time.monotonic_ns()

    def now_wall(self) -> datetime:
        return self.to_wall(self.now_steady())

    def to_wall(self, steady_ns: int) -> datetime:
        delta_ns = int(steady_ns) - self.steady_anchor_ns
        # timedelta resolution is 1us; floor keeps ordering monotonic
        return self.wall_anchor + timedelta(microseconds=delta_ns // 1000)


__all__ = [
    "CaptureClock",
    "format_utc_timestamp",
    "format_fixed",
    "from_epoch_micros",
    "from_epoch_millis",
    "to_epoch_micros",
    "to_epoch_millis",
    "utc_now",
]
