"""Render configuration and the JSON manifest, the contract between CLI/API and engine."""

import json
import math
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

from reelforge.errors import ConfigError


class ColorFilter(str, Enum):
    NONE = "none"
    BRIGHT = "bright"
    WARM = "warm"
    COOL = "cool"
    CONTRAST = "contrast"
    VINTAGE = "vintage"


class OverlayMode(str, Enum):
    """Where the cover image goes on the canvas."""

    FULL_CANVAS = "full"
    TOP_BAND = "top"
    CENTER_BAND = "center"


@dataclass(frozen=True)
class TextOverlayConfig:
    """Static text drawn over every frame."""

    enabled: bool = False
    text: str = ""
    position_pct: float = 85.0
    font_size: int = 96
    text_color: str = "#ee4d2d"
    stroke_color: str = "#ffffff"
    background_color: str = "#ffffffcc"
    font_path: str | None = None

    @classmethod
    def from_suggestion(
        cls, hook: str | None = None, caption: str | None = None, **kwargs: Any
    ) -> "TextOverlayConfig":
        """Build an overlay from generated copy, preferring the hook line."""
        for candidate in (hook, caption):
            if candidate and candidate.strip():
                first_line = candidate.strip().splitlines()[0].strip()
                return cls(enabled=True, text=first_line, **kwargs)
        return cls(enabled=False, **kwargs)


@dataclass(frozen=True)
class TransformConfig:
    """Per-run transform settings. Immutable for the duration of a render."""

    maintain_aspect_ratio: bool = True
    zoom_level: float = 0.0
    flip_horizontal: bool = False
    speed: float = 1.0
    volume: float = 1.0
    color_filter: ColorFilter = ColorFilter.NONE
    motion_blur: bool = False
    film_grain: float = 0.0
    vignette: bool = False
    shuffle_segments: bool = False
    trim_start: float = 0.0
    trim_end: float = 0.0
    overlay_mode: OverlayMode = OverlayMode.FULL_CANVAS
    text_overlay: TextOverlayConfig = field(default_factory=TextOverlayConfig)

    def __post_init__(self) -> None:
        # Coerce plain strings coming from JSON into enums
        try:
            object.__setattr__(self, "color_filter", ColorFilter(self.color_filter))
            object.__setattr__(self, "overlay_mode", OverlayMode(self.overlay_mode))
        except ValueError as e:
            raise ConfigError(str(e)) from e

        for name in ("zoom_level", "speed", "volume", "film_grain", "trim_start", "trim_end"):
            if not math.isfinite(getattr(self, name)):
                raise ConfigError(f"{name} must be a finite number, got {getattr(self, name)}")

        object.__setattr__(self, "volume", min(max(float(self.volume), 0.0), 1.0))

        if not -0.5 <= self.zoom_level <= 0.5:
            raise ConfigError(f"zoom_level must be within [-0.5, 0.5], got {self.zoom_level}")
        if not 0.0 <= self.film_grain <= 0.6:
            raise ConfigError(f"film_grain must be within [0, 0.6], got {self.film_grain}")
        if not 0.25 <= self.speed <= 4.0:
            raise ConfigError(f"speed must be within [0.25, 4.0], got {self.speed}")
        if self.trim_start < 0 or self.trim_end < 0:
            raise ConfigError("trim_start and trim_end must not be negative")


@dataclass(frozen=True)
class RenderSettings:
    """Output geometry and codec parameters."""

    width: int = 1080
    height: int = 1920
    fps: int = 30
    sample_rate: int = 48000
    channels: int = 2
    keyframe_interval: float = 2.0
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    audio_bitrate: int = 128_000
    high_bitrate: int = 8_000_000
    low_bitrate: int = 4_000_000
    high_bitrate_pixels: int = 921_600
    shuffle_chunk: float = 3.0
    end_margin: float = 0.2
    min_duration: float = 0.5

    @property
    def video_bitrate(self) -> int:
        if self.width * self.height > self.high_bitrate_pixels:
            return self.high_bitrate
        return self.low_bitrate

    @property
    def keyframe_every(self) -> int:
        """Keyframe cadence in output frames."""
        return max(1, round(self.keyframe_interval * self.fps))


@dataclass
class Manifest:
    """Top-level render manifest."""

    input: Path
    output: Path
    version: str = "1"
    overlay: Path | None = None
    config: TransformConfig = field(default_factory=TransformConfig)


def config_from_dict(data: dict[str, Any]) -> TransformConfig:
    """Build a validated TransformConfig from a JSON-style dict.

    Unknown keys are rejected so typos don't silently fall back to defaults.
    """
    known = {f.name for f in fields(TransformConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config fields: {', '.join(sorted(unknown))}")

    values = dict(data)
    text = values.pop("text_overlay", None)
    try:
        if text is not None:
            values["text_overlay"] = TextOverlayConfig(**text)
        return TransformConfig(**values)
    except TypeError as e:
        raise ConfigError(str(e)) from e


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "input" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'input' and 'output' fields")

    return Manifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        output=Path(data["output"]),
        overlay=Path(data["overlay"]) if data.get("overlay") else None,
        config=config_from_dict(data.get("config", {})),
    )


def default_output(video: Path, output_dir: Path | None = None) -> Path:
    """``<stem>_reel.mp4`` next to *video*, or inside *output_dir* when given."""
    name = video.stem + "_reel.mp4"
    return Path(output_dir) / name if output_dir else video.with_name(name)


def load_batch(path: str | Path) -> list[Manifest]:
    """Load a manifest that names one input or a queue of inputs.

    A batch manifest has an ``inputs`` list instead of ``input``/``output``.
    Every item shares the overlay and config; outputs are named by
    ``default_output`` inside the optional ``output_dir``.
    """
    path = Path(path)
    data = json.loads(path.read_text())

    if "inputs" not in data:
        return [load_manifest(path)]

    inputs = data["inputs"]
    if not isinstance(inputs, list) or not inputs:
        raise ValueError("Manifest 'inputs' must be a non-empty list")

    output_dir = Path(data["output_dir"]) if data.get("output_dir") else None
    overlay = Path(data["overlay"]) if data.get("overlay") else None
    config = config_from_dict(data.get("config", {}))
    return [
        Manifest(
            version=data.get("version", "1"),
            input=Path(item),
            output=default_output(Path(item), output_dir),
            overlay=overlay,
            config=config,
        )
        for item in inputs
    ]
