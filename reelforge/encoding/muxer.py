"""Container muxer: collects encoded chunks per track and writes one MP4."""

import logging
import subprocess
import threading
from pathlib import Path
from typing import IO

from reelforge import ffutil
from reelforge.errors import MuxError
from reelforge.models import EncodedUnit

logger = logging.getLogger(__name__)

TRACK_FILES = {"video": "video.h264", "audio": "audio.aac"}


class Muxer:
    """Spools each track's elementary stream, then stream-copies them into MP4.

    Chunks may arrive from both encoders in any interleaving; each track is
    spooled separately, so cross-track order never matters. Within a track,
    timestamps must not go backwards.
    """

    def __init__(self, work_dir: Path, fps: int):
        self.work_dir = Path(work_dir)
        self.fps = fps
        self.output_path = self.work_dir / "output.mp4"
        self.bytes_written = {track: 0 for track in TRACK_FILES}
        self.last_timestamp_us = {track: 0 for track in TRACK_FILES}
        self._lock = threading.Lock()
        self._closed = False
        self._files: dict[str, IO[bytes]] = {
            track: open(self.work_dir / name, "wb") for track, name in TRACK_FILES.items()
        }

    def add(self, unit: EncodedUnit) -> None:
        with self._lock:
            if self._closed:
                raise MuxError(f"Muxer is closed; dropped {unit.track} chunk")
            if unit.track not in self._files:
                raise MuxError(f"Unknown track {unit.track!r}")
            if unit.timestamp_us < self.last_timestamp_us[unit.track]:
                raise MuxError(
                    f"{unit.track} timestamp went backwards: "
                    f"{unit.timestamp_us} < {self.last_timestamp_us[unit.track]}"
                )
            self._files[unit.track].write(unit.payload)
            self.bytes_written[unit.track] += len(unit.payload)
            self.last_timestamp_us[unit.track] = unit.timestamp_us

    def _close_files(self) -> None:
        with self._lock:
            self._closed = True
            for f in self._files.values():
                f.close()

    def finalize(self) -> bytes:
        """Write the container and return its bytes."""
        self._close_files()
        for track, size in self.bytes_written.items():
            if size == 0:
                raise MuxError(f"No encoded {track} data to mux")

        cmd = ffutil.mux_cmd(
            self.work_dir / TRACK_FILES["video"],
            self.work_dir / TRACK_FILES["audio"],
            self.output_path,
            self.fps,
        )
        try:
            subprocess.run(cmd, capture_output=True, check=True)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode(errors="replace")
            raise MuxError("ffmpeg mux failed", cause=e, stderr=stderr) from e
        except OSError as e:
            raise MuxError("Cannot start the ffmpeg muxer", cause=e) from e

        data = self.output_path.read_bytes()
        logger.info(
            "Muxed %d bytes (video %d, audio %d)",
            len(data), self.bytes_written["video"], self.bytes_written["audio"],
        )
        return data

    def discard(self) -> None:
        self._close_files()
        self.output_path.unlink(missing_ok=True)
