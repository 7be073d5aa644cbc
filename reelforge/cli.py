"""Thin CLI entry point: builds a TransformConfig and calls the engine."""

import argparse
import logging
import sys
from pathlib import Path

from reelforge.engine import render
from reelforge.errors import RenderError
from reelforge.manifest import (
    ColorFilter,
    Manifest,
    OverlayMode,
    TextOverlayConfig,
    TransformConfig,
    default_output,
    load_batch,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reelforge",
        description="ReelForge: re-encode a video into a vertical reel with visual transforms.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    proc = sub.add_parser("render", help="Render one or more video files")
    proc.add_argument("video", nargs="*", type=Path, help="Input video file(s), rendered in order")
    proc.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    proc.add_argument("--output", "-o", type=Path, help="Output file path (single VIDEO only)")
    proc.add_argument("--output-dir", type=Path, help="Directory for outputs named <stem>_reel.mp4")
    proc.add_argument("--overlay", type=Path, help="Cover/overlay image")
    proc.add_argument("--overlay-mode", choices=[m.value for m in OverlayMode], default="full", help="Where the cover image goes")
    proc.add_argument("--zoom", type=float, default=0.0, help="Zoom in (>0) or out (<0), within [-0.5, 0.5]")
    proc.add_argument("--flip", action="store_true", help="Mirror horizontally")
    proc.add_argument("--speed", type=float, default=1.0, help="Playback speed multiplier")
    proc.add_argument("--volume", type=float, default=1.0, help="Output volume, 0.0-1.0")
    proc.add_argument("--filter", choices=[f.value for f in ColorFilter], default="none", help="Color filter")
    proc.add_argument("--motion-blur", action="store_true", help="Darken frames to fake motion blur")
    proc.add_argument("--grain", type=float, default=0.0, help="Film grain intensity, 0.0-0.6")
    proc.add_argument("--vignette", action="store_true", help="Darken the edges")
    proc.add_argument("--shuffle", action="store_true", help="Swap adjacent 3s segments")
    proc.add_argument("--trim-start", type=float, default=0.0, help="Start time in seconds")
    proc.add_argument("--trim-end", type=float, default=0.0, help="End time in seconds (0 = natural end)")
    proc.add_argument("--text", type=str, help="Text overlay")
    proc.add_argument("--text-position", type=float, default=85.0, help="Text center as percent of height")
    proc.add_argument("--text-size", type=int, default=96, help="Text font size in pixels")
    proc.add_argument("--seed", type=int, help="Seed for reproducible film grain")

    serve = sub.add_parser("serve", help="Launch the web API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    return parser


def config_from_args(args: argparse.Namespace) -> TransformConfig:
    text = (
        TextOverlayConfig(
            enabled=True,
            text=args.text,
            position_pct=args.text_position,
            font_size=args.text_size,
        )
        if args.text else TextOverlayConfig()
    )
    return TransformConfig(
        zoom_level=args.zoom,
        flip_horizontal=args.flip,
        speed=args.speed,
        volume=args.volume,
        color_filter=args.filter,
        motion_blur=args.motion_blur,
        film_grain=args.grain,
        vignette=args.vignette,
        shuffle_segments=args.shuffle,
        trim_start=args.trim_start,
        trim_end=args.trim_end,
        overlay_mode=args.overlay_mode,
        text_overlay=text,
    )


def _progress_printer():
    last_shown = -1

    def on_progress(percent: float) -> None:
        nonlocal last_shown
        # One line per whole percent is plenty
        if int(percent) > last_shown:
            last_shown = int(percent)
            print(f"  [{percent:3.0f}%] rendering")

    return on_progress


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from reelforge.web import create_app
        app = create_app()
        print(f"ReelForge web API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    try:
        if args.manifest:
            jobs = load_batch(args.manifest)
        elif args.video:
            if args.output and len(args.video) > 1:
                print("Error: --output takes a single VIDEO; use --output-dir for several.", file=sys.stderr)
                sys.exit(1)
            config = config_from_args(args)
            jobs = [
                Manifest(
                    input=video,
                    output=args.output or default_output(video, args.output_dir),
                    overlay=args.overlay,
                    config=config,
                )
                for video in args.video
            ]
        else:
            print("Error: provide either a VIDEO argument or --manifest.", file=sys.stderr)
            sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # Items run one after another; a failed item does not stop the queue
    failed = 0
    for index, m in enumerate(jobs, start=1):
        if len(jobs) > 1:
            print(f"[{index}/{len(jobs)}] {m.input}")
        try:
            result = render(
                m.input,
                overlay=m.overlay,
                config=m.config,
                on_progress=_progress_printer(),
                seed=args.seed,
            )
        except KeyboardInterrupt:
            print("Cancelled.", file=sys.stderr)
            sys.exit(130)
        except RenderError as e:
            failed += 1
            print(f"Error ({e.category}): {m.input}: {e}", file=sys.stderr)
            continue

        result.save(m.output)

        print()
        print(f"Done! Output: {m.output}")
        print(f"  Duration: {result.duration:.1f}s, {result.frame_count} frames at {result.fps} fps")
        print(f"  Segments: {len(result.segments)}")
        print(f"  Size: {len(result.data) / 1024 / 1024:.1f} MB")

    if len(jobs) > 1:
        print(f"\n{len(jobs) - failed} of {len(jobs)} videos rendered")
    if failed:
        sys.exit(2)


if __name__ == "__main__":
    main()
