"""Unit tests for timestamp helpers and CaptureClock."""

from datetime import datetime, timedelta, timezone

from labops.core.time_utils import (
    CaptureClock,
    format_utc_timestamp,
    from_epoch_millis,
    to_epoch_millis,
)


class TestTimestampFormatting:

    def test_millisecond_precision(self):
        ts = datetime(2026, 3, 4, 5, 6, 7, 891234, tzinfo=timezone.utc)
        assert format_utc_timestamp(ts) == "2026-03-04T05:06:07.891Z"

    def test_naive_treated_as_utc(self):
        assert format_utc_timestamp(datetime(2026, 1, 1)) == "2026-01-01T00:00:00.000Z"

    def test_offset_converted_to_utc(self):
        ts = datetime(2026, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_utc_timestamp(ts) == "2026-01-01T00:00:00.000Z"

    def test_epoch_millis_roundtrip(self):
        ts = datetime(2026, 1, 15, 12, 0, 0, 123000, tzinfo=timezone.utc)
        assert from_epoch_millis(to_epoch_millis(ts)) == ts


class TestCaptureClock:

    def test_affine_mapping(self, fixed_wall_time):
        clock = CaptureClock.anchored(fixed_wall_time, 1_000_000_000)
        assert clock.to_wall(1_000_000_000) == fixed_wall_time
        assert clock.to_wall(3_500_000_000) == fixed_wall_time + timedelta(seconds=2.5)

    def test_sub_microsecond_floors(self, fixed_wall_time):
        clock = CaptureClock.anchored(fixed_wall_time, 0)
        assert clock.to_wall(1_999) == fixed_wall_time + timedelta(microseconds=1)

    def test_naive_anchor_gets_utc(self):
        clock = CaptureClock.anchored(datetime(2026, 1, 1), 0)
        assert clock.wall_anchor.tzinfo is timezone.utc

    def test_monotonic_ordering(self, fixed_clock):
        earlier = fixed_clock.to_wall(10_000)
        later = fixed_clock.to_wall(20_000)
        assert later > earlier
