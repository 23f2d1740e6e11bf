"""Frame acquisition loop for the real backend.

A :class:`FrameProvider` decides each frame's outcome and size; the loop
owns frame ids, cadence and timestamps. Providers may report ``stall_periods``
to push a frame (and every later one) back by whole frame periods, which is
how burst stalls show up as timestamp gaps.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List

from labops.backends.base import FrameOutcome, FrameSample
from labops.backends.sim import MASK64, SPLITMIX_INCREMENT, splitmix64
from labops.core.errors import BackendError

OUTCOME_SALT = 0x8B8B8B8B8B8B8B8B


def determine_frame_outcome(
    seed: int, frame_id: int, timeout_percent: float, incomplete_percent: float
) -> FrameOutcome:
    if timeout_percent <= 0.0 and incomplete_percent <= 0.0:
        return FrameOutcome.RECEIVED
    mixed = splitmix64(((seed ^ OUTCOME_SALT) + frame_id * SPLITMIX_INCREMENT) & MASK64)
    sample_percent = (mixed % 100_000) / 1000.0
    if sample_percent < timeout_percent:
        return FrameOutcome.TIMEOUT
    if sample_percent < timeout_percent + incomplete_percent:
        return FrameOutcome.INCOMPLETE
    return FrameOutcome.RECEIVED


@dataclass(frozen=True)
class FrameProviderSample:
    outcome: FrameOutcome = FrameOutcome.RECEIVED
    # 0 means "use the loop default"
    size_bytes: int = 0
    stall_periods: int = 0


class FrameProvider(ABC):
    """Source of per-frame outcomes for :func:`run_acquisition_loop`."""

    @abstractmethod
    def next_sample(self, frame_id: int) -> FrameProviderSample:
        """Return the sample for absolute ``frame_id``; raise BackendError to abort."""


class DeterministicFrameProvider(FrameProvider):
    """Seeded timeout/incomplete outcomes; everything else is received."""

    def __init__(self, seed: int, frame_size_bytes: int, timeout_percent: float, incomplete_percent: float):
        self.seed = seed
        self.frame_size_bytes = frame_size_bytes
        self.timeout_percent = timeout_percent
        self.incomplete_percent = incomplete_percent

    def next_sample(self, frame_id: int) -> FrameProviderSample:
        outcome = determine_frame_outcome(self.seed, frame_id, self.timeout_percent, self.incomplete_percent)
        if outcome is FrameOutcome.TIMEOUT:
            return FrameProviderSample(outcome)
        if outcome is FrameOutcome.INCOMPLETE:
            return FrameProviderSample(outcome, max(1, self.frame_size_bytes // 4))
        return FrameProviderSample(outcome, self.frame_size_bytes)


@dataclass
class AcquisitionLoopInput:
    duration_ms: int
    frame_rate_fps: float
    default_frame_size_bytes: int
    stream_start: datetime
    first_frame_id: int = 0


@dataclass
class AcquisitionLoopCounters:
    frames_total: int = 0
    frames_received: int = 0
    frames_dropped: int = 0
    frames_timeout: int = 0
    frames_incomplete: int = 0
    stall_periods_total: int = 0


@dataclass
class AcquisitionLoopResult:
    frames: List[FrameSample] = field(default_factory=list)
    counters: AcquisitionLoopCounters = field(default_factory=AcquisitionLoopCounters)
    next_frame_id: int = 0


def run_acquisition_loop(
    provider: FrameProvider,
    loop_input: AcquisitionLoopInput,
    stall_periods_before: int = 0,
) -> AcquisitionLoopResult:
    """Produce ``floor(duration_ms * fps / 1000)`` frames from ``provider``.

    ``stall_periods_before`` carries stall offsets from earlier chunks of
    the same stream so cadence stays continuous across calls. Timestamps are
    strictly increasing.

    Raises:
        BackendError: invalid input, or the provider refused a frame.
    """
    if loop_input.duration_ms < 0:
        raise BackendError("acquisition loop duration cannot be negative", operation="pull_frames")
    fps = loop_input.frame_rate_fps
    if not math.isfinite(fps) or fps <= 0.0:
        raise BackendError("acquisition loop requires a positive finite frame_rate_fps", operation="pull_frames")
    if loop_input.default_frame_size_bytes <= 0:
        raise BackendError("acquisition loop requires default_frame_size_bytes > 0", operation="pull_frames")

    result = AcquisitionLoopResult(next_frame_id=loop_input.first_frame_id)
    frame_count = int(loop_input.duration_ms * fps / 1000.0)
    if frame_count <= 0:
        return result

    period_ns = max(1, round(1_000_000_000.0 / fps))
    counters = result.counters
    stall_total = stall_periods_before
    for index in range(frame_count):
        frame_id = loop_input.first_frame_id + index
        provided = provider.next_sample(frame_id)
        stall_total += provided.stall_periods
        counters.stall_periods_total += provided.stall_periods

        offset_us = (period_ns * (frame_id + stall_total)) // 1000
        timestamp = loop_input.stream_start + timedelta(microseconds=offset_us)
        if result.frames and timestamp <= result.frames[-1].timestamp:
            timestamp = result.frames[-1].timestamp + timedelta(microseconds=1)

        if provided.outcome is FrameOutcome.TIMEOUT:
            frame = FrameSample.timed_out(frame_id, timestamp)
            counters.frames_timeout += 1
            counters.frames_dropped += 1
        elif provided.outcome is FrameOutcome.INCOMPLETE:
            size = provided.size_bytes or max(1, loop_input.default_frame_size_bytes // 4)
            frame = FrameSample.incomplete(frame_id, timestamp, size)
            counters.frames_incomplete += 1
            counters.frames_dropped += 1
        elif provided.outcome is FrameOutcome.DROPPED:
            frame = FrameSample.dropped_frame(frame_id, timestamp)
            counters.frames_dropped += 1
        else:
            frame = FrameSample.received(
                frame_id, timestamp, provided.size_bytes or loop_input.default_frame_size_bytes
            )
            counters.frames_received += 1
        result.frames.append(frame)

    counters.frames_total = len(result.frames)
    result.next_frame_id = loop_input.first_frame_id + frame_count
    return result


__all__ = [
    "AcquisitionLoopCounters",
    "AcquisitionLoopInput",
    "AcquisitionLoopResult",
    "DeterministicFrameProvider",
    "FrameProvider",
    "FrameProviderSample",
    "determine_frame_outcome",
    "run_acquisition_loop",
]
