"""Shared data types used across ReelForge."""

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np


@dataclass(frozen=True)
class Segment:
    """A contiguous range of source time in seconds, ``[start, end)``."""

    start: float
    end: float

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(f"Segment end {self.end} must be after start {self.start}")

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    width: int
    height: int
    fps: float
    has_audio: bool
    audio_sample_rate: int
    codec_video: str
    codec_audio: str


@dataclass
class VideoFrame:
    """A decoded frame: ``pixels`` is HxWx3 uint8 RGB, ``timestamp`` in source seconds."""

    timestamp: float
    pixels: np.ndarray


@dataclass
class AudioBuffer:
    """Decoded PCM: ``samples`` is Nx2 float32, ``timestamp`` in source seconds."""

    timestamp: float
    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


@dataclass
class VideoUnit:
    """A composited raster stamped on the output clock (microseconds)."""

    timestamp_us: int
    pixels: np.ndarray
    keyframe: bool = False


@dataclass
class AudioUnit:
    """Retimed PCM stamped on the output clock (microseconds)."""

    timestamp_us: int
    samples: np.ndarray
    sample_rate: int


@dataclass
class EncodedUnit:
    """A chunk of encoder output on its way to the muxer."""

    track: str
    payload: bytes
    timestamp_us: int


@dataclass
class EncodedContainer:
    """The finished output of a run: one in-memory MP4."""

    data: bytes
    width: int
    height: int
    fps: int
    duration: float
    format: str = "mp4"
    mime_type: str = "video/mp4"
    frame_count: int = 0
    keyframe_count: int = 0
    segments: list[Segment] = field(default_factory=list)

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.write_bytes(self.data)
        return path
