"""Audio gain and retiming onto the output clock."""

import numpy as np

from reelforge.models import AudioBuffer, AudioUnit, Segment
from reelforge.timeline import OutputClock


class GainStage:
    """Linear gain on sample amplitude, clamped to [0, 1]."""

    def __init__(self, volume: float):
        self.volume = min(max(float(volume), 0.0), 1.0)

    def apply(self, buffer: AudioBuffer) -> AudioBuffer:
        # Always copy: source buffers may be views into the decoder's read buffer
        samples = np.multiply(buffer.samples, self.volume, dtype=np.float32)
        return AudioBuffer(timestamp=buffer.timestamp, samples=samples, sample_rate=buffer.sample_rate)


class AudioRetimer:
    """Re-stamp buffers of one segment from source time to output time.

    A buffer whose source timestamp is at or past the segment end is dropped
    whole; no in-sample truncation is done.
    """

    def __init__(self, clock: OutputClock, segment: Segment):
        self.clock = clock
        self.segment = segment

    def retime(self, buffer: AudioBuffer) -> AudioUnit | None:
        if buffer.timestamp >= self.segment.end:
            return None
        return AudioUnit(
            timestamp_us=self.clock.to_output(buffer.timestamp, self.segment),
            samples=np.array(buffer.samples, dtype=np.float32, copy=True),
            sample_rate=buffer.sample_rate,
        )
