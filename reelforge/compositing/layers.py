"""Static layers drawn over every frame: the cover image and the text overlay.

Both are fixed for the whole run, so they are rendered once into a single
RGBA layer and alpha-composited per frame.
"""

import logging
from pathlib import Path

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from reelforge.errors import ConfigError
from reelforge.manifest import OverlayMode, TextOverlayConfig

logger = logging.getLogger(__name__)

_FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf", "LiberationSans-Bold.ttf")


def load_overlay(source: str | Path | Image.Image) -> Image.Image:
    """Decode the cover image to RGBA before the run starts."""
    if isinstance(source, Image.Image):
        return source.convert("RGBA")
    try:
        with Image.open(source) as img:
            return img.convert("RGBA")
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot decode overlay image {source}: {e}") from e


def load_font(size: int, font_path: str | None = None) -> ImageFont.FreeTypeFont:
    candidates = [font_path] if font_path else []
    candidates += list(_FONT_CANDIDATES)
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    logger.debug("No bold TrueType font found, using Pillow's default font")
    return ImageFont.load_default(size=size)


def parse_color(value: str | None) -> tuple[int, int, int, int] | None:
    """Parse a CSS-style color; ``None`` for empty or fully transparent values."""
    if not value or value.strip().lower() in ("none", "transparent"):
        return None
    try:
        rgba = ImageColor.getcolor(value, "RGBA")
    except ValueError as e:
        raise ConfigError(f"Invalid color {value!r}") from e
    return None if rgba[3] == 0 else rgba


def place_overlay(canvas: Image.Image, overlay: Image.Image, mode: OverlayMode) -> None:
    width, height = canvas.size
    if mode == OverlayMode.FULL_CANVAS:
        canvas.alpha_composite(overlay.resize((width, height), Image.Resampling.LANCZOS))
        return

    band_height = max(1, round(width * overlay.height / overlay.width))
    band = overlay.resize((width, band_height), Image.Resampling.LANCZOS)
    top = 0 if mode == OverlayMode.TOP_BAND else (height - band_height) // 2
    if top < 0 or band_height > height:
        # Band taller than the canvas: crop to the visible part
        crop_top = -top
        band = band.crop((0, crop_top, width, crop_top + height))
        top = 0
    canvas.alpha_composite(band, dest=(0, top))


def draw_text(canvas: Image.Image, text: TextOverlayConfig) -> None:
    """Draw bold, outlined text centered horizontally at ``position_pct`` of the height.

    A rounded background pill is drawn behind the text only when the
    background color is not fully transparent.
    """
    width, height = canvas.size
    font = load_font(text.font_size, text.font_path)
    fill = parse_color(text.text_color) or (255, 255, 255, 255)
    stroke_fill = parse_color(text.stroke_color)
    stroke_width = max(1, text.font_size // 12) if stroke_fill else 0
    background = parse_color(text.background_color)

    center = (width / 2, height * text.position_pct / 100.0)

    if background is not None:
        left, top, right, bottom = ImageDraw.Draw(canvas).textbbox(
            center, text.text, font=font, anchor="mm", stroke_width=stroke_width,
        )
        pad_x = text.font_size * 0.5
        box_height = max(text.font_size * 1.8, bottom - top + text.font_size * 0.4)
        box = (
            left - pad_x,
            center[1] - box_height / 2,
            right + pad_x,
            center[1] + box_height / 2,
        )
        pill = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        ImageDraw.Draw(pill).rounded_rectangle(box, radius=box_height / 2, fill=background)
        canvas.alpha_composite(pill)

    glyphs = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    ImageDraw.Draw(glyphs).text(
        center,
        text.text,
        font=font,
        fill=fill,
        anchor="mm",
        stroke_width=stroke_width,
        stroke_fill=stroke_fill,
    )
    canvas.alpha_composite(glyphs)


def build_static_layer(
    width: int,
    height: int,
    overlay: Image.Image | None,
    mode: OverlayMode,
    text: TextOverlayConfig,
) -> np.ndarray | None:
    """Render cover image then text into one HxWx4 uint8 array, or None if both are off."""
    has_text = text.enabled and bool(text.text.strip())
    if overlay is None and not has_text:
        return None

    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    if overlay is not None:
        place_overlay(canvas, overlay, mode)
    if has_text:
        draw_text(canvas, text)
    return np.asarray(canvas, dtype=np.uint8)
