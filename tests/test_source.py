"""Tests for the ffmpeg-backed media source (mocked decoder processes)."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from reelforge.models import ProbeResult
from reelforge.source import FFmpegMediaSource


def _info(has_audio=True):
    return ProbeResult(
        duration=10.0, width=4, height=2, fps=25.0, has_audio=has_audio,
        audio_sample_rate=44100, codec_video="h264", codec_audio="aac" if has_audio else "",
    )


def _proc(chunks):
    proc = MagicMock()
    proc.stdout.read.side_effect = list(chunks)
    proc.poll.return_value = None
    proc.wait.return_value = 0
    return proc


class TestFFmpegMediaSource:
    @patch("reelforge.source.subprocess.Popen")
    def test_seek_starts_both_decoders(self, mock_popen):
        mock_popen.side_effect = [_proc([]), _proc([])]
        source = FFmpegMediaSource(Path("in.mp4"), fps=30, speed=1.5, probe_result=_info())
        source.seek(3.0)

        video_cmd, audio_cmd = (c.args[0] for c in mock_popen.call_args_list)
        assert video_cmd[video_cmd.index("-ss") + 1] == "3.000000"
        assert "fps=45,scale=4:2" in video_cmd
        assert audio_cmd[audio_cmd.index("-af") + 1] == "atempo=1.5"

    @patch("reelforge.source.subprocess.Popen")
    def test_video_frames_are_stamped_in_source_time(self, mock_popen):
        frame = bytes(range(24))
        mock_popen.side_effect = [_proc([frame, frame, b""]), _proc([])]
        source = FFmpegMediaSource(Path("in.mp4"), fps=10, speed=2.0, probe_result=_info())
        source.seek(1.0)

        first = source.next_video_frame()
        second = source.next_video_frame()
        assert first.timestamp == 1.0
        assert second.timestamp == pytest.approx(1.2)
        assert first.pixels.shape == (2, 4, 3)
        assert first.pixels[0, 0, 2] == 2
        assert source.next_video_frame() is None

    @patch("reelforge.source.subprocess.Popen")
    def test_audio_buffers(self, mock_popen):
        pcm = np.full((1024, 2), 0.25, dtype=np.float32).tobytes()
        mock_popen.side_effect = [_proc([]), _proc([pcm, pcm[:100], b""])]
        source = FFmpegMediaSource(Path("in.mp4"), sample_rate=48000, probe_result=_info())
        source.seek(0.5)

        first = source.next_audio_buffer()
        assert first.samples.shape == (1024, 2)
        assert first.timestamp == 0.5
        # partial trailing sample frames are dropped
        second = source.next_audio_buffer()
        assert len(second.samples) == 12
        assert second.timestamp == pytest.approx(0.5 + 1024 / 48000)
        assert source.next_audio_buffer() is None

    @patch("reelforge.source.subprocess.Popen")
    def test_no_audio_stream(self, mock_popen):
        mock_popen.return_value = _proc([])
        source = FFmpegMediaSource(Path("in.mp4"), probe_result=_info(has_audio=False))
        source.seek(0.0)
        assert mock_popen.call_count == 1
        assert source.next_audio_buffer() is None

    @patch("reelforge.source.subprocess.Popen")
    def test_reseek_stops_previous_decoders(self, mock_popen):
        first, second = _proc([]), _proc([])
        mock_popen.side_effect = [first, second, _proc([]), _proc([])]
        source = FFmpegMediaSource(Path("in.mp4"), probe_result=_info())
        source.seek(0.0)
        source.seek(3.0)
        first.kill.assert_called_once()
        second.kill.assert_called_once()

    @patch("reelforge.source.subprocess.Popen")
    def test_close(self, mock_popen):
        proc = _proc([])
        mock_popen.return_value = proc
        source = FFmpegMediaSource(Path("in.mp4"), probe_result=_info(has_audio=False))
        source.seek(0.0)
        source.close()
        proc.kill.assert_called_once()
        assert source.next_video_frame() is None

    def test_reads_probe_dimensions(self):
        source = FFmpegMediaSource(Path("in.mp4"), probe_result=_info())
        assert (source.duration, source.width, source.height) == (10.0, 4, 2)
        assert source.next_video_frame() is None
