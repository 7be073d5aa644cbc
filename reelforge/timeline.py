"""Timeline planning: trim window, segment list and the output clock."""

import math
from dataclasses import dataclass

from reelforge.errors import InvalidRangeError
from reelforge.models import Segment

SHUFFLE_CHUNK = 3.0
END_MARGIN = 0.2
MIN_DURATION = 0.5

# Chunk remainders shorter than this are folded into the previous chunk.
_EPSILON = 1e-6


@dataclass(frozen=True)
class TimelinePlan:
    """The segments of one run, in output order."""

    duration: float
    trim_start: float
    effective_end: float
    segments: tuple[Segment, ...]

    @property
    def window(self) -> float:
        return self.effective_end - self.trim_start

    def emitted_duration(self, speed: float = 1.0) -> float:
        """Length of the rendered output in seconds."""
        return sum(s.duration for s in self.segments) / speed


def _chunk(start: float, end: float, length: float) -> list[Segment]:
    count = max(1, math.ceil((end - start - _EPSILON) / length))
    chunks: list[Segment] = []
    for i in range(count):
        chunk_start = start + i * length
        chunk_end = end if i == count - 1 else start + (i + 1) * length
        chunks.append(Segment(start=chunk_start, end=chunk_end))
    return chunks


def _swap_pairs(segments: list[Segment]) -> list[Segment]:
    swapped = list(segments)
    for i in range(0, len(swapped) - 1, 2):
        swapped[i], swapped[i + 1] = swapped[i + 1], swapped[i]
    return swapped


def plan_timeline(
    duration: float,
    trim_start: float = 0.0,
    trim_end: float = 0.0,
    shuffle: bool = False,
    chunk: float = SHUFFLE_CHUNK,
    margin: float = END_MARGIN,
    min_duration: float = MIN_DURATION,
) -> TimelinePlan:
    """Compute the trim window and the segments to render, in output order.

    ``trim_end == 0`` means "to the natural end". The usable end of the
    source is ``duration - margin`` so decoders are never asked for the last
    few frames, where they tend to stall at end-of-stream.

    Raises:
        InvalidRangeError: if the source is shorter than ``min_duration`` or
            the window is empty after clamping.
    """
    if duration < min_duration:
        raise InvalidRangeError(
            f"Source is {duration:.2f}s long; at least {min_duration:.2f}s is required"
        )

    requested_end = trim_end if trim_end > 0 else duration
    effective_end = min(requested_end, duration, duration - margin)

    if trim_start < 0 or trim_start >= effective_end:
        raise InvalidRangeError(
            f"Trim start ({trim_start:.2f}s) must be before trim end ({effective_end:.2f}s)"
        )

    if shuffle:
        segments = _swap_pairs(_chunk(trim_start, effective_end, chunk))
    else:
        segments = [Segment(start=trim_start, end=effective_end)]

    return TimelinePlan(
        duration=duration,
        trim_start=trim_start,
        effective_end=effective_end,
        segments=tuple(segments),
    )


class OutputClock:
    """Microsecond timestamp of the output timeline.

    Advanced once per segment by that segment's emitted duration, independent
    of where the segment sits in source time.
    """

    def __init__(self, speed: float = 1.0):
        self.speed = speed
        self.timestamp_us = 0
        self.history: list[int] = []

    def to_output(self, source_time: float, segment: Segment) -> int:
        offset = (source_time - segment.start) / self.speed
        return self.timestamp_us + round(offset * 1_000_000)

    def segment_duration_us(self, segment: Segment) -> int:
        return round(segment.duration / self.speed * 1_000_000)

    def advance(self, segment: Segment) -> int:
        self.timestamp_us += self.segment_duration_us(segment)
        self.history.append(self.timestamp_us)
        return self.timestamp_us
