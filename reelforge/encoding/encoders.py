"""ffmpeg encoder processes for the video and audio tracks.

Each encoder is one ffmpeg process: raw units go in on stdin, the encoded
elementary stream comes out on stdout. A drain thread per process forwards
stdout chunks to the muxer as they appear, so a full stdout pipe never
blocks the encoder while we are still writing to it.
"""

import logging
import subprocess
import tempfile
import threading
from typing import IO, Callable

import numpy as np

from reelforge import ffutil
from reelforge.errors import EncoderError
from reelforge.manifest import RenderSettings
from reelforge.models import AudioUnit, EncodedUnit, VideoUnit

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024

Sink = Callable[[EncodedUnit], None]


class EncoderProcess:
    """One ffmpeg encoder with a stdout drain thread."""

    def __init__(self, track: str, cmd: list[str], sink: Sink):
        self.track = track
        self.sink = sink
        self.watermark_us = 0
        self.error: BaseException | None = None
        self._stderr: IO[bytes] = tempfile.TemporaryFile()
        try:
            self.proc = subprocess.Popen(
                cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=self._stderr
            )
        except OSError as e:
            self._stderr.close()
            raise EncoderError(f"Cannot start the {track} encoder", cause=e) from e
        self._drain = threading.Thread(
            target=self._drain_loop, name=f"reelforge-{track}-drain", daemon=True
        )
        self._drain.start()

    def _drain_loop(self) -> None:
        assert self.proc.stdout is not None
        try:
            while True:
                chunk = self.proc.stdout.read1(READ_CHUNK)
                if not chunk:
                    break
                self.sink(EncodedUnit(track=self.track, payload=chunk, timestamp_us=self.watermark_us))
        except Exception as e:  # surfaced to the writer on its next call
            self.error = e

    def stderr_tail(self) -> str:
        self._stderr.seek(0)
        return self._stderr.read().decode(errors="replace")[-500:]

    def _raise_drain_error(self) -> None:
        if self.error is not None:
            raise EncoderError(
                f"{self.track} output could not be forwarded", cause=self.error
            ) from self.error

    def write(self, data, timestamp_us: int) -> None:
        self._raise_drain_error()
        assert self.proc.stdin is not None
        try:
            self.proc.stdin.write(data)
        except OSError as e:
            self.proc.wait()
            raise EncoderError(
                f"The {self.track} encoder stopped accepting input", cause=e, stderr=self.stderr_tail()
            ) from e
        self.watermark_us = max(self.watermark_us, timestamp_us)

    def finish(self) -> None:
        """Close stdin and wait until every encoded byte has reached the sink."""
        assert self.proc.stdin is not None
        try:
            self.proc.stdin.close()
        except OSError as e:
            raise EncoderError(
                f"The {self.track} encoder failed while flushing", cause=e, stderr=self.stderr_tail()
            ) from e
        returncode = self.proc.wait()
        self._drain.join()
        self._raise_drain_error()
        if returncode != 0:
            raise EncoderError(
                f"The {self.track} encoder exited with status {returncode}", stderr=self.stderr_tail()
            )

    def kill(self) -> None:
        if self.proc.poll() is None:
            self.proc.kill()
        for pipe in (self.proc.stdin, self.proc.stdout):
            if pipe is not None:
                try:
                    pipe.close()
                except OSError:
                    # stdin may hold unflushed bytes for a dead process
                    pass
        self.proc.wait()
        self._drain.join(timeout=5)
        self._stderr.close()


class VideoTrackEncoder:
    """Constant-frame-rate H.264 encoder fed from the output clock.

    Frame ``n`` covers output time ``n / fps``. A unit whose slot is already
    filled is dropped; a gap before a unit is filled by repeating the last
    frame (black if nothing was written yet).

    Every ``keyframe_every``-th slot is a keyframe. ffmpeg is forced onto the
    same cadence, and a unit whose keyframe flag disagrees with its slot is
    refused.
    """

    def __init__(self, settings: RenderSettings, sink: Sink):
        self.settings = settings
        self.frame_bytes = settings.width * settings.height * 3
        self.frames_written = 0
        self.frames_dropped = 0
        self.keyframes = 0
        self._last: bytes | None = None
        self.process = EncoderProcess(
            "video",
            ffutil.video_encode_cmd(
                settings.width,
                settings.height,
                settings.fps,
                settings.video_bitrate,
                settings.keyframe_every,
                settings.video_codec,
            ),
            sink,
        )

    def slot(self, timestamp_us: int) -> int:
        return round(timestamp_us * self.settings.fps / 1_000_000)

    def _write(self, data: bytes) -> None:
        if self.frames_written % self.settings.keyframe_every == 0:
            self.keyframes += 1
        timestamp_us = round(self.frames_written * 1_000_000 / self.settings.fps)
        self.process.write(data, timestamp_us)
        self.frames_written += 1

    def _fill_to(self, slot: int) -> None:
        if self.frames_written >= slot:
            return
        filler = self._last if self._last is not None else bytes(self.frame_bytes)
        while self.frames_written < slot:
            self._write(filler)

    def encode(self, unit: VideoUnit) -> None:
        slot = self.slot(unit.timestamp_us)
        if slot < self.frames_written:
            self.frames_dropped += 1
            return
        if unit.keyframe != (slot % self.settings.keyframe_every == 0):
            raise EncoderError(
                f"Keyframe flag {unit.keyframe} does not match output slot {slot}"
            )
        self._fill_to(slot)
        # tobytes() copies, so the caller may reuse its raster right away
        data = np.ascontiguousarray(unit.pixels, dtype=np.uint8).tobytes()
        if len(data) != self.frame_bytes:
            raise EncoderError(
                f"Frame has {len(data)} bytes, expected {self.frame_bytes}"
            )
        self._write(data)
        self._last = data

    def flush(self, duration_us: int) -> None:
        self._fill_to(self.slot(duration_us))
        self.process.finish()


class AudioTrackEncoder:
    """AAC encoder fed from the output clock.

    Gaps before a unit are filled with silence and samples overlapping what
    was already written are dropped, so sample ``n`` always sits at output
    time ``n / sample_rate``.
    """

    def __init__(self, settings: RenderSettings, sink: Sink):
        self.settings = settings
        self.samples_written = 0
        self.samples_padded = 0
        self.process = EncoderProcess(
            "audio",
            ffutil.audio_encode_cmd(
                settings.sample_rate, settings.channels, settings.audio_bitrate, settings.audio_codec
            ),
            sink,
        )

    def position(self, timestamp_us: int) -> int:
        return round(timestamp_us * self.settings.sample_rate / 1_000_000)

    def _write(self, samples: np.ndarray) -> None:
        timestamp_us = round(self.samples_written * 1_000_000 / self.settings.sample_rate)
        self.process.write(np.ascontiguousarray(samples, dtype=np.float32).tobytes(), timestamp_us)
        self.samples_written += len(samples)

    def _pad_to(self, position: int) -> None:
        block = self.settings.sample_rate
        while self.samples_written < position:
            count = min(block, position - self.samples_written)
            self._write(np.zeros((count, self.settings.channels), dtype=np.float32))
            self.samples_padded += count

    def encode(self, unit: AudioUnit) -> None:
        if unit.sample_rate != self.settings.sample_rate:
            raise EncoderError(
                f"Audio unit at {unit.sample_rate} Hz, encoder expects {self.settings.sample_rate} Hz"
            )
        start = self.position(unit.timestamp_us)
        samples = unit.samples
        if start < self.samples_written:
            samples = samples[self.samples_written - start:]
        else:
            self._pad_to(start)
        if len(samples):
            self._write(samples)

    def flush(self, duration_us: int) -> None:
        self._pad_to(self.position(duration_us))
        self.process.finish()
