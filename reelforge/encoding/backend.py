"""Encoder backends: the interchangeable encode+mux implementations."""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Protocol

from reelforge.encoding.encoders import AudioTrackEncoder, VideoTrackEncoder
from reelforge.encoding.muxer import Muxer
from reelforge.errors import EncoderError
from reelforge.manifest import RenderSettings
from reelforge.models import AudioUnit, VideoUnit

logger = logging.getLogger(__name__)


class EncoderBackend(Protocol):
    frame_count: int
    keyframe_count: int

    def open(self, settings: RenderSettings) -> None: ...

    def encode_video(self, unit: VideoUnit) -> None: ...

    def encode_audio(self, unit: AudioUnit) -> None: ...

    def flush(self, duration_us: int) -> None: ...

    def finalize(self) -> bytes: ...

    def close(self) -> None: ...


class FFmpegPipeBackend:
    """Frame-by-frame encoding through piped ffmpeg encoders.

    Every frame and audio buffer is placed explicitly on the output clock,
    which is what makes exact keyframe cadence and segment retiming possible.
    """

    def __init__(self, work_dir: Path | None = None):
        self._given_dir = work_dir
        self.work_dir: Path | None = None
        self.video: VideoTrackEncoder | None = None
        self.audio: AudioTrackEncoder | None = None
        self.muxer: Muxer | None = None
        self._closed = False

    @property
    def frame_count(self) -> int:
        return self.video.frames_written if self.video else 0

    @property
    def keyframe_count(self) -> int:
        return self.video.keyframes if self.video else 0

    def open(self, settings: RenderSettings) -> None:
        if self._given_dir is not None:
            self.work_dir = Path(self._given_dir)
            self.work_dir.mkdir(parents=True, exist_ok=True)
        else:
            self.work_dir = Path(tempfile.mkdtemp(prefix="reelforge_"))
        self.muxer = Muxer(self.work_dir, settings.fps)
        self.video = VideoTrackEncoder(settings, self.muxer.add)
        self.audio = AudioTrackEncoder(settings, self.muxer.add)
        logger.info(
            "Encoding %dx%d@%d %s %d bps, %s %d Hz, keyframe every %d frames",
            settings.width, settings.height, settings.fps, settings.video_codec,
            settings.video_bitrate, settings.audio_codec, settings.sample_rate,
            settings.keyframe_every,
        )

    def _require_open(self) -> None:
        if self.muxer is None or self._closed:
            raise EncoderError("Encoder backend is not open")

    def encode_video(self, unit: VideoUnit) -> None:
        self._require_open()
        self.video.encode(unit)

    def encode_audio(self, unit: AudioUnit) -> None:
        self._require_open()
        self.audio.encode(unit)

    def flush(self, duration_us: int) -> None:
        self._require_open()
        self.video.flush(duration_us)
        self.audio.flush(duration_us)
        if self.audio.samples_padded:
            logger.debug("Padded %d samples of silence", self.audio.samples_padded)
        if self.video.frames_dropped:
            logger.debug("Dropped %d late video frames", self.video.frames_dropped)

    def finalize(self) -> bytes:
        self._require_open()
        return self.muxer.finalize()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for encoder in (self.video, self.audio):
            if encoder is not None:
                encoder.process.kill()
        if self.muxer is not None:
            self.muxer.discard()
        if self.work_dir is not None and self._given_dir is None:
            shutil.rmtree(self.work_dir, ignore_errors=True)
