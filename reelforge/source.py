"""Seekable decode sources feeding the pipeline.

A ``MediaSource`` is pulled, not pushed: the pipeline seeks to a segment
start and then asks for frames and audio buffers until it has what it needs.
Both taps block until data is available and return ``None`` at end of stream.
"""

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import IO, Protocol

import numpy as np

from reelforge import ffutil
from reelforge.models import AudioBuffer, ProbeResult, VideoFrame

logger = logging.getLogger(__name__)


class MediaSource(Protocol):
    """Decoded frames and audio, already tempo-adjusted by ``speed``.

    Timestamps stay in source seconds; the pipeline divides offsets by
    ``speed`` to place them on the output clock.
    """

    duration: float
    speed: float
    width: int
    height: int

    def seek(self, t: float) -> None: ...

    def next_video_frame(self) -> VideoFrame | None: ...

    def next_audio_buffer(self) -> AudioBuffer | None: ...

    def close(self) -> None: ...


class _Decoder:
    """One ffmpeg decode process writing raw data to a pipe."""

    def __init__(self, cmd: list[str]):
        self._stderr: IO[bytes] = tempfile.TemporaryFile()
        self.proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=self._stderr)

    def read(self, size: int) -> bytes:
        assert self.proc.stdout is not None
        return self.proc.stdout.read(size)

    def stderr_tail(self) -> str:
        self._stderr.seek(0)
        return self._stderr.read().decode(errors="replace")[-500:]

    def close(self) -> None:
        if self.proc.poll() is None:
            self.proc.kill()
        if self.proc.stdout:
            self.proc.stdout.close()
        self.proc.wait()
        self._stderr.close()


class FFmpegMediaSource:
    """Decode a media file with ffmpeg, one video and one audio process per seek.

    Frames come out at ``fps * speed`` per source second, so each frame maps
    to exactly one output tick after the tempo change; audio is passed
    through an atempo chain for the same reason. Timestamps are reported in
    source seconds.
    """

    def __init__(
        self,
        path: str | Path,
        fps: int = 30,
        sample_rate: int = 48000,
        channels: int = 2,
        speed: float = 1.0,
        buffer_samples: int = 1024,
        probe_result: ProbeResult | None = None,
    ):
        self.path = Path(path)
        self.info = probe_result or ffutil.probe(self.path)
        self.duration = self.info.duration
        self.width = self.info.width
        self.height = self.info.height
        self.fps = fps
        self.sample_rate = sample_rate
        self.channels = channels
        self.speed = speed
        self.buffer_samples = buffer_samples

        self._video: _Decoder | None = None
        self._audio: _Decoder | None = None
        self._origin = 0.0
        self._frames_read = 0
        self._samples_read = 0

    @property
    def frame_bytes(self) -> int:
        return self.width * self.height * 3

    def seek(self, t: float) -> None:
        self._stop()
        self._origin = t
        self._frames_read = 0
        self._samples_read = 0
        logger.debug("Seeking %s to %.3fs", self.path.name, t)
        self._video = _Decoder(ffutil.video_decode_cmd(
            self.path, t, self.width, self.height, self.fps * self.speed,
        ))
        if self.info.has_audio:
            self._audio = _Decoder(ffutil.audio_decode_cmd(
                self.path, t, self.sample_rate, self.channels, self.speed,
            ))

    def next_video_frame(self) -> VideoFrame | None:
        if self._video is None:
            return None
        buf = self._video.read(self.frame_bytes)
        if len(buf) < self.frame_bytes:
            self._log_eof(self._video, "video")
            return None
        pixels = np.frombuffer(buf, dtype=np.uint8).reshape((self.height, self.width, 3))
        timestamp = self._origin + self._frames_read * self.speed / self.fps
        self._frames_read += 1
        return VideoFrame(timestamp=timestamp, pixels=pixels)

    def next_audio_buffer(self) -> AudioBuffer | None:
        if self._audio is None:
            return None
        frame_size = 4 * self.channels
        buf = self._audio.read(self.buffer_samples * frame_size)
        usable = len(buf) - len(buf) % frame_size
        if usable == 0:
            self._log_eof(self._audio, "audio")
            return None
        samples = np.frombuffer(buf[:usable], dtype=np.float32).reshape((-1, self.channels))
        timestamp = self._origin + self._samples_read / self.sample_rate * self.speed
        self._samples_read += len(samples)
        return AudioBuffer(timestamp=timestamp, samples=samples, sample_rate=self.sample_rate)

    def _log_eof(self, decoder: _Decoder, kind: str) -> None:
        if decoder.proc.wait() != 0:
            logger.warning(
                "%s decoder for %s exited with %s: %s",
                kind, self.path.name, decoder.proc.returncode, decoder.stderr_tail(),
            )

    def _stop(self) -> None:
        for decoder in (self._video, self._audio):
            if decoder is not None:
                decoder.close()
        self._video = None
        self._audio = None

    def close(self) -> None:
        self._stop()
