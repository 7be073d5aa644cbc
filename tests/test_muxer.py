"""Tests for the container muxer and the ffmpeg pipe backend."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from reelforge.encoding.backend import FFmpegPipeBackend
from reelforge.encoding.muxer import Muxer
from reelforge.errors import EncoderError, MuxError
from reelforge.models import EncodedUnit


def _fake_mux(cmd, **kwargs):
    # The output path is the last argument of the mux command
    with open(cmd[-1], "wb") as f:
        f.write(b"MP4DATA")
    return MagicMock(returncode=0)


class TestMuxer:
    def test_spools_tracks_separately(self, tmp_path):
        muxer = Muxer(tmp_path, 30)
        muxer.add(EncodedUnit("video", b"v1", 0))
        muxer.add(EncodedUnit("audio", b"a1", 0))
        muxer.add(EncodedUnit("video", b"v2", 33_333))
        muxer.discard()
        assert (tmp_path / "video.h264").read_bytes() == b"v1v2"
        assert (tmp_path / "audio.aac").read_bytes() == b"a1"

    def test_backwards_timestamp_rejected(self, tmp_path):
        muxer = Muxer(tmp_path, 30)
        muxer.add(EncodedUnit("video", b"v1", 100))
        with pytest.raises(MuxError, match="backwards"):
            muxer.add(EncodedUnit("video", b"v2", 50))
        muxer.discard()

    def test_unknown_track(self, tmp_path):
        muxer = Muxer(tmp_path, 30)
        with pytest.raises(MuxError, match="Unknown track"):
            muxer.add(EncodedUnit("subtitle", b"x", 0))
        muxer.discard()

    def test_add_after_close(self, tmp_path):
        muxer = Muxer(tmp_path, 30)
        muxer.discard()
        with pytest.raises(MuxError, match="closed"):
            muxer.add(EncodedUnit("video", b"v", 0))

    @patch("reelforge.encoding.muxer.subprocess.run", side_effect=_fake_mux)
    def test_finalize_returns_container_bytes(self, mock_run, tmp_path):
        muxer = Muxer(tmp_path, 30)
        muxer.add(EncodedUnit("video", b"v", 0))
        muxer.add(EncodedUnit("audio", b"a", 0))
        assert muxer.finalize() == b"MP4DATA"
        cmd = mock_run.call_args[0][0]
        assert "+faststart" in cmd
        assert cmd[cmd.index("-c") + 1] == "copy"

    def test_finalize_without_audio(self, tmp_path):
        muxer = Muxer(tmp_path, 30)
        muxer.add(EncodedUnit("video", b"v", 0))
        with pytest.raises(MuxError, match="audio"):
            muxer.finalize()

    @patch("reelforge.encoding.muxer.subprocess.run")
    def test_ffmpeg_failure(self, mock_run, tmp_path):
        mock_run.side_effect = subprocess.CalledProcessError(1, ["ffmpeg"], stderr=b"Invalid data found")
        muxer = Muxer(tmp_path, 30)
        muxer.add(EncodedUnit("video", b"v", 0))
        muxer.add(EncodedUnit("audio", b"a", 0))
        with pytest.raises(MuxError, match="Invalid data found"):
            muxer.finalize()


class TestFFmpegPipeBackend:
    def test_not_open(self):
        backend = FFmpegPipeBackend()
        with pytest.raises(EncoderError, match="not open"):
            backend.finalize()
        assert backend.frame_count == 0

    @patch("reelforge.encoding.backend.AudioTrackEncoder")
    @patch("reelforge.encoding.backend.VideoTrackEncoder")
    def test_open_wires_encoders_to_muxer(self, mock_video, mock_audio, small_settings):
        backend = FFmpegPipeBackend()
        backend.open(small_settings)
        work_dir = backend.work_dir
        assert work_dir.is_dir()
        assert mock_video.call_args[0][1] == backend.muxer.add
        assert mock_audio.call_args[0][1] == backend.muxer.add

        backend.close()
        backend.video.process.kill.assert_called()
        assert not work_dir.exists()

    @patch("reelforge.encoding.backend.AudioTrackEncoder")
    @patch("reelforge.encoding.backend.VideoTrackEncoder")
    def test_given_work_dir_is_kept(self, mock_video, mock_audio, small_settings, tmp_path):
        backend = FFmpegPipeBackend(work_dir=tmp_path / "enc")
        backend.open(small_settings)
        backend.close()
        assert (tmp_path / "enc").is_dir()

    @patch("reelforge.encoding.backend.AudioTrackEncoder")
    @patch("reelforge.encoding.backend.VideoTrackEncoder")
    def test_flush_flushes_both_tracks(self, mock_video, mock_audio, small_settings):
        backend = FFmpegPipeBackend()
        backend.open(small_settings)
        backend.video.frames_dropped = 0
        backend.audio.samples_padded = 0
        backend.flush(1_000_000)
        backend.video.flush.assert_called_once_with(1_000_000)
        backend.audio.flush.assert_called_once_with(1_000_000)
        backend.close()
