"""Tests for CLI argument handling."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from reelforge.cli import build_parser, config_from_args, main
from reelforge.errors import InvalidRangeError
from reelforge.manifest import ColorFilter, OverlayMode


class TestConfigFromArgs:
    def test_defaults(self):
        args = build_parser().parse_args(["render", "in.mp4"])
        cfg = config_from_args(args)
        assert cfg.zoom_level == 0.0
        assert cfg.text_overlay.enabled is False
        assert cfg.overlay_mode is OverlayMode.FULL_CANVAS

    def test_all_flags(self):
        args = build_parser().parse_args([
            "render", "in.mp4",
            "--zoom", "0.12", "--flip", "--speed", "1.05", "--volume", "0.5",
            "--filter", "cool", "--motion-blur", "--grain", "0.3", "--vignette",
            "--shuffle", "--trim-start", "1", "--trim-end", "8",
            "--overlay-mode", "top", "--text", "Watch this", "--text-size", "64",
        ])
        cfg = config_from_args(args)
        assert cfg.zoom_level == 0.12
        assert cfg.flip_horizontal is True
        assert cfg.color_filter is ColorFilter.COOL
        assert cfg.shuffle_segments is True
        assert (cfg.trim_start, cfg.trim_end) == (1.0, 8.0)
        assert cfg.overlay_mode is OverlayMode.TOP_BAND
        assert cfg.text_overlay.text == "Watch this"
        assert cfg.text_overlay.font_size == 64


class TestMain:
    @patch("reelforge.cli.render")
    def test_render_writes_output(self, mock_render, tmp_path, monkeypatch):
        result = MagicMock(duration=9.8, frame_count=294, fps=30, segments=[], data=b"MP4")
        mock_render.return_value = result
        out = tmp_path / "out.mp4"
        monkeypatch.setattr("sys.argv", ["reelforge", "render", str(tmp_path / "in.mp4"), "-o", str(out)])

        main()

        result.save.assert_called_once_with(out)
        assert mock_render.call_args.args[0] == tmp_path / "in.mp4"

    @patch("reelforge.cli.render")
    def test_render_error_exit_code(self, mock_render, monkeypatch, capsys):
        mock_render.side_effect = InvalidRangeError("Source is too short")
        monkeypatch.setattr("sys.argv", ["reelforge", "render", "in.mp4"])

        with pytest.raises(SystemExit) as info:
            main()

        assert info.value.code == 2
        assert "input" in capsys.readouterr().err

    def test_bad_config_exit_code(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["reelforge", "render", "in.mp4", "--zoom", "2"])
        with pytest.raises(SystemExit) as info:
            main()
        assert info.value.code == 1

    def test_default_output_name(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["reelforge", "render", "clip.mp4"])
        with patch("reelforge.cli.render") as mock_render:
            mock_render.return_value = MagicMock(duration=3.0, frame_count=90, fps=30, segments=[], data=b"")
            main()
        mock_render.return_value.save.assert_called_once_with(Path("clip_reel.mp4"))


def _result():
    return MagicMock(duration=3.0, frame_count=90, fps=30, segments=[], data=b"")


class TestBatch:
    @patch("reelforge.cli.render")
    def test_failed_item_does_not_stop_queue(self, mock_render, tmp_path, monkeypatch, capsys):
        second = _result()
        mock_render.side_effect = [InvalidRangeError("Source is too short"), second]
        a, b = tmp_path / "a.mp4", tmp_path / "b.mp4"
        monkeypatch.setattr("sys.argv", ["reelforge", "render", str(a), str(b)])

        with pytest.raises(SystemExit) as info:
            main()

        assert info.value.code == 2
        assert [c.args[0] for c in mock_render.call_args_list] == [a, b]
        second.save.assert_called_once_with(tmp_path / "b_reel.mp4")
        out, err = capsys.readouterr()
        assert f"Error (input): {a}" in err
        assert "1 of 2 videos rendered" in out

    @patch("reelforge.cli.render")
    def test_all_items_succeed(self, mock_render, tmp_path, monkeypatch, capsys):
        results = [_result(), _result()]
        mock_render.side_effect = results
        monkeypatch.setattr("sys.argv", [
            "reelforge", "render", "x.mp4", "y.mp4", "--output-dir", str(tmp_path), "--flip",
        ])

        main()

        assert mock_render.call_count == 2
        assert all(c.kwargs["config"].flip_horizontal for c in mock_render.call_args_list)
        assert "2 of 2 videos rendered" in capsys.readouterr().out
        results[0].save.assert_called_once_with(tmp_path / "x_reel.mp4")

    def test_single_output_with_many_videos(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["reelforge", "render", "x.mp4", "y.mp4", "-o", "out.mp4"])
        with pytest.raises(SystemExit) as info:
            main()
        assert info.value.code == 1

    @patch("reelforge.cli.render")
    def test_batch_manifest(self, mock_render, tmp_path, monkeypatch):
        results = [_result(), _result()]
        mock_render.side_effect = results
        manifest = tmp_path / "batch.json"
        manifest.write_text(json.dumps({
            "inputs": ["one.mp4", "two.mp4"],
            "output_dir": str(tmp_path),
            "overlay": "cover.png",
            "config": {"shuffle_segments": True},
        }))
        monkeypatch.setattr("sys.argv", ["reelforge", "render", "--manifest", str(manifest)])

        main()

        assert [c.args[0] for c in mock_render.call_args_list] == [Path("one.mp4"), Path("two.mp4")]
        assert all(c.kwargs["overlay"] == Path("cover.png") for c in mock_render.call_args_list)
        results[1].save.assert_called_once_with(tmp_path / "two_reel.mp4")
