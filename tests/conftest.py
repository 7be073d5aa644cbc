"""Shared test fixtures."""

from pathlib import Path

import numpy as np
import pytest

from reelforge.errors import EncoderError
from reelforge.manifest import RenderSettings
from reelforge.models import AudioBuffer, AudioUnit, VideoFrame, VideoUnit

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeMediaSource:
    """In-memory MediaSource: solid gray frames and constant-level audio.

    Frame ``i`` after a seek to ``t`` sits at ``t + i * speed / fps``, like
    the ffmpeg-backed source.
    """

    def __init__(
        self,
        duration=10.0,
        width=32,
        height=18,
        fps=10,
        sample_rate=8000,
        speed=1.0,
        buffer_samples=800,
        level=0.5,
        has_audio=True,
    ):
        self.duration = duration
        self.width = width
        self.height = height
        self.fps = fps
        self.sample_rate = sample_rate
        self.speed = speed
        self.buffer_samples = buffer_samples
        self.level = level
        self.has_audio = has_audio
        self.seeks: list[float] = []
        self.closed = 0
        self._origin = 0.0
        self._frames = 0
        self._samples = 0

    def seek(self, t):
        self.seeks.append(t)
        self._origin = t
        self._frames = 0
        self._samples = 0

    def next_video_frame(self):
        timestamp = self._origin + self._frames * self.speed / self.fps
        if timestamp >= self.duration:
            return None
        self._frames += 1
        pixels = np.full((self.height, self.width, 3), 128, dtype=np.uint8)
        return VideoFrame(timestamp=timestamp, pixels=pixels)

    def next_audio_buffer(self):
        if not self.has_audio:
            return None
        timestamp = self._origin + self._samples / self.sample_rate * self.speed
        if timestamp >= self.duration:
            return None
        self._samples += self.buffer_samples
        samples = np.full((self.buffer_samples, 2), self.level, dtype=np.float32)
        return AudioBuffer(timestamp=timestamp, samples=samples, sample_rate=self.sample_rate)

    def close(self):
        self.closed += 1


class FakeBackend:
    """EncoderBackend that records what it is given instead of encoding."""

    def __init__(self, fail_on_video=None, fail_on_audio=None):
        self.settings = None
        self.video: list[VideoUnit] = []
        self.audio: list[AudioUnit] = []
        self.flushed_to = None
        self.finalized = False
        self.closed = 0
        self.fail_on_video = fail_on_video
        self.fail_on_audio = fail_on_audio

    @property
    def frame_count(self):
        return len(self.video)

    @property
    def keyframe_count(self):
        return sum(1 for u in self.video if u.keyframe)

    def open(self, settings):
        self.settings = settings

    def encode_video(self, unit):
        if self.fail_on_video is not None and len(self.video) >= self.fail_on_video:
            raise EncoderError("video encoder exploded")
        self.video.append(VideoUnit(unit.timestamp_us, unit.pixels.copy(), unit.keyframe))

    def encode_audio(self, unit):
        if self.fail_on_audio is not None and len(self.audio) >= self.fail_on_audio:
            raise EncoderError("audio encoder exploded", stderr="aac: out of memory")
        self.audio.append(unit)

    def flush(self, duration_us):
        self.flushed_to = duration_us

    def finalize(self):
        self.finalized = True
        return b"fake-mp4"

    def close(self):
        self.closed += 1


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def small_settings() -> RenderSettings:
    return RenderSettings(width=36, height=64, fps=10, sample_rate=8000)


@pytest.fixture
def fake_source() -> FakeMediaSource:
    return FakeMediaSource()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_source():
    return FakeMediaSource


@pytest.fixture
def make_backend():
    return FakeBackend
