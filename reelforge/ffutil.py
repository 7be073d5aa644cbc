"""FFmpeg/ffprobe subprocess helpers."""

import json
import shutil
import subprocess
from pathlib import Path

from reelforge.errors import UnsupportedEnvironmentError
from reelforge.models import ProbeResult

QUIET = ["-hide_banner", "-loglevel", "error"]


def check_ffmpeg() -> None:
    """Raise UnsupportedEnvironmentError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise UnsupportedEnvironmentError(f"{cmd} not found on PATH")


def parse_encoders(output: str) -> set[str]:
    """Parse the encoder names out of ``ffmpeg -encoders`` output."""
    names: set[str] = set()
    in_table = False
    for line in output.splitlines():
        if line.strip().startswith("------"):
            in_table = True
            continue
        if not in_table:
            continue
        parts = line.split()
        if len(parts) >= 2 and len(parts[0]) == 6:
            names.add(parts[1])
    return names


def check_encoders(*required: str) -> None:
    """Raise UnsupportedEnvironmentError if any of *required* is not built into ffmpeg."""
    result = subprocess.run(
        ["ffmpeg", "-hide_banner", "-encoders"],
        capture_output=True, text=True,
    )
    available = parse_encoders(result.stdout)
    missing = [name for name in required if name not in available]
    if missing:
        raise UnsupportedEnvironmentError(
            f"ffmpeg lacks required encoder(s): {', '.join(missing)}"
        )


def _rotation(stream: dict) -> int:
    for side_data in stream.get("side_data_list", []):
        if "rotation" in side_data:
            return int(float(side_data["rotation"]))
    return int(stream.get("tags", {}).get("rotate", 0))


def probe(input_path: Path) -> ProbeResult:
    """Extract media metadata via ffprobe.

    Width and height are reported as displayed, i.e. swapped for sources with
    a 90/270 degree rotation, since ffmpeg auto-rotates when decoding.
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    data = json.loads(result.stdout)

    video_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "video"), None
    )
    audio_stream = next(
        (s for s in data["streams"] if s["codec_type"] == "audio"), None
    )

    if video_stream is None:
        raise ValueError(f"No video stream found in {input_path}")

    # Parse fps from r_frame_rate (e.g. "30/1")
    num, den = video_stream["r_frame_rate"].split("/")
    fps = int(num) / int(den) if int(den) else 0.0

    width, height = int(video_stream["width"]), int(video_stream["height"])
    if abs(_rotation(video_stream)) % 180 == 90:
        width, height = height, width

    duration = data["format"].get("duration") or video_stream.get("duration") or 0.0

    return ProbeResult(
        duration=float(duration),
        width=width,
        height=height,
        fps=fps,
        has_audio=audio_stream is not None,
        audio_sample_rate=int(audio_stream["sample_rate"]) if audio_stream else 0,
        codec_video=video_stream["codec_name"],
        codec_audio=audio_stream["codec_name"] if audio_stream else "",
    )


def atempo_chain(speed: float) -> list[str]:
    """Split a tempo factor into atempo stages, each within [0.5, 2.0]."""
    stages: list[str] = []
    remaining = speed
    while remaining > 2.0:
        stages.append("atempo=2.0")
        remaining /= 2.0
    while remaining < 0.5:
        stages.append("atempo=0.5")
        remaining /= 0.5
    if abs(remaining - 1.0) > 1e-9:
        stages.append(f"atempo={remaining:.6g}")
    return stages


def video_decode_cmd(
    input_path: Path, start: float, width: int, height: int, rate: float
) -> list[str]:
    """Decode from *start* as raw rgb24 frames sampled at *rate* frames per source second."""
    return [
        "ffmpeg", *QUIET,
        "-ss", f"{start:.6f}",
        "-i", str(input_path),
        "-map", "0:v:0",
        "-an", "-sn",
        "-vf", f"fps={rate:.6g},scale={width}:{height}",
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-",
    ]


def audio_decode_cmd(
    input_path: Path, start: float, sample_rate: int, channels: int, speed: float = 1.0
) -> list[str]:
    """Decode from *start* as interleaved f32le PCM, tempo-adjusted by *speed*."""
    cmd = [
        "ffmpeg", *QUIET,
        "-ss", f"{start:.6f}",
        "-i", str(input_path),
        "-map", "0:a:0",
        "-vn", "-sn",
    ]
    stages = atempo_chain(speed)
    if stages:
        cmd += ["-af", ",".join(stages)]
    cmd += [
        "-ac", str(channels),
        "-ar", str(sample_rate),
        "-f", "f32le",
        "-",
    ]
    return cmd


def video_encode_cmd(
    width: int,
    height: int,
    fps: int,
    bitrate: int,
    keyframe_every: int,
    codec: str = "libx264",
) -> list[str]:
    """Encode raw rgb24 frames from stdin into an H.264 elementary stream on stdout.

    Scene-cut detection and B-frames are off so keyframes land exactly every
    *keyframe_every* frames.
    """
    return [
        "ffmpeg", *QUIET,
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-s", f"{width}x{height}",
        "-r", str(fps),
        "-i", "-",
        "-c:v", codec,
        "-profile:v", "high",
        "-pix_fmt", "yuv420p",
        "-b:v", str(bitrate),
        "-maxrate", str(bitrate),
        "-bufsize", str(bitrate * 2),
        "-g", str(keyframe_every),
        "-keyint_min", str(keyframe_every),
        "-force_key_frames", f"expr:eq(mod(n,{keyframe_every}),0)",
        "-sc_threshold", "0",
        "-bf", "0",
        "-f", "h264",
        "-",
    ]


def audio_encode_cmd(
    sample_rate: int, channels: int, bitrate: int, codec: str = "aac"
) -> list[str]:
    """Encode f32le PCM from stdin into an ADTS AAC stream on stdout."""
    return [
        "ffmpeg", *QUIET,
        "-f", "f32le",
        "-ar", str(sample_rate),
        "-ac", str(channels),
        "-i", "-",
        "-c:a", codec,
        "-b:a", str(bitrate),
        "-f", "adts",
        "-",
    ]


def mux_cmd(video_path: Path, audio_path: Path, output_path: Path, fps: int) -> list[str]:
    """Stream-copy an H.264 and an ADTS track into one MP4."""
    return [
        "ffmpeg", *QUIET, "-y",
        "-fflags", "+genpts",
        "-framerate", str(fps),
        "-f", "h264",
        "-i", str(video_path),
        "-f", "aac",
        "-i", str(audio_path),
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-c", "copy",
        "-movflags", "+faststart",
        "-f", "mp4",
        str(output_path),
    ]
