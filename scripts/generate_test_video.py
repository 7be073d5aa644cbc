#!/usr/bin/env python3
"""Generate a synthetic source clip and cover image for manual ReelForge runs.

Produces a ~12-second 1280x720 clip whose picture and tone change every 3s,
so shuffled segments are easy to spot and hear:
  0-3s   testsrc2 pattern, 440 Hz
  3-6s   red,              550 Hz
  6-9s   green,            660 Hz
  9-12s  blue,             880 Hz

and a translucent 1080x400 cover image for --overlay-mode top/center.
"""

import subprocess
import sys
from pathlib import Path

from PIL import Image, ImageDraw

CHUNKS = [("testsrc2", 440), ("red", 550), ("green", 660), ("blue", 880)]
CHUNK_SECONDS = 3
SIZE = "1280x720"


def generate_test_video(output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)

    video_parts, audio_parts = [], []
    for i, (picture, freq) in enumerate(CHUNKS):
        if picture == "testsrc2":
            video_parts.append(f"testsrc2=s={SIZE}:d={CHUNK_SECONDS}:r=30[v{i}]")
        else:
            video_parts.append(f"color=c={picture}:s={SIZE}:d={CHUNK_SECONDS}:r=30[v{i}]")
        audio_parts.append(f"sine=f={freq}:d={CHUNK_SECONDS}:sample_rate=48000[a{i}]")

    n = len(CHUNKS)
    video_labels = "".join(f"[v{i}]" for i in range(n))
    audio_labels = "".join(f"[a{i}]" for i in range(n))
    filter_complex = ";".join(
        video_parts
        + audio_parts
        + [
            f"{video_labels}concat=n={n}:v=1:a=0[vout]",
            f"{audio_labels}concat=n={n}:v=0:a=1[aout]",
        ]
    )

    cmd = [
        "ffmpeg", "-y",
        "-filter_complex", filter_complex,
        "-map", "[vout]",
        "-map", "[aout]",
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-shortest",
        str(output),
    ]
    subprocess.run(cmd, check=True)
    print(f"Generated: {output}")


def generate_cover(output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    cover = Image.new("RGBA", (1080, 400), (0, 0, 0, 0))
    draw = ImageDraw.Draw(cover)
    draw.rounded_rectangle((40, 40, 1040, 360), radius=60, fill=(238, 77, 45, 200))
    draw.text((540, 200), "COVER", fill=(255, 255, 255, 255), anchor="mm", font_size=120)
    cover.save(output)
    print(f"Generated: {output}")


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/synthetic.mp4")
    generate_test_video(out)
    generate_cover(out.with_name("cover.png"))
