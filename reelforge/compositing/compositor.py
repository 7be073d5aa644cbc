"""Per-frame compositor. Turns one decoded frame into one output raster.

Layer order (bottom to top), fixed:
1. black background
2. color filter, applied to the source layer
3. source frame: mirrored, fit to width, zoomed about the center
4. motion-blur darkening
5. film grain (overlay blend, shifted each frame)
6. vignette
7. cover image
8. text
"""

import logging
import random

import numpy as np
from PIL import Image

from reelforge.compositing import filters
from reelforge.compositing.layers import build_static_layer
from reelforge.errors import SurfaceUnavailableError
from reelforge.manifest import RenderSettings, TransformConfig

logger = logging.getLogger(__name__)

MOTION_BLUR_OPACITY = 0.3
GRAIN_MAX_SHIFT = 100


class FrameCompositor:
    """Owns the drawing surface for one run.

    Everything that does not change between frames (draw geometry, grain
    tile, vignette mask, cover/text layer) is computed in the constructor.
    The returned raster is reused: it is only valid until the next call to
    :meth:`compose`.
    """

    def __init__(
        self,
        config: TransformConfig,
        settings: RenderSettings,
        source_size: tuple[int, int],
        overlay: Image.Image | None = None,
        seed: int | None = None,
    ):
        self.config = config
        self.width = settings.width
        self.height = settings.height
        self.source_width, self.source_height = source_size
        self._rng = random.Random(seed)

        if self.width <= 0 or self.height <= 0:
            raise SurfaceUnavailableError(f"Invalid surface size {self.width}x{self.height}")
        if self.source_width <= 0 or self.source_height <= 0:
            raise SurfaceUnavailableError(
                f"Invalid source size {self.source_width}x{self.source_height}"
            )

        try:
            self._canvas = np.zeros((self.height, self.width, 3), dtype=np.float32)
            self._output = np.zeros((self.height, self.width, 3), dtype=np.uint8)
            self._grain = self._build_grain(seed)
            self._vignette = (
                filters.make_vignette(self.height, self.width)[..., None]
                if config.vignette else None
            )
            self._static = self._build_static(overlay)
        except MemoryError as e:
            raise SurfaceUnavailableError(
                f"Cannot allocate a {self.width}x{self.height} surface"
            ) from e

        self.dest_box, self.source_box = self._geometry()

    def _build_grain(self, seed: int | None) -> tuple[np.ndarray, np.ndarray] | None:
        if self.config.film_grain <= 0:
            return None
        gray, alpha = filters.make_grain_tile(
            self.config.film_grain, np.random.default_rng(seed)
        )
        rows, cols = self.height + GRAIN_MAX_SHIFT, self.width + GRAIN_MAX_SHIFT
        return filters.tile_to(gray, rows, cols), filters.tile_to(alpha, rows, cols)

    def _build_static(self, overlay: Image.Image | None) -> tuple[np.ndarray, np.ndarray] | None:
        layer = build_static_layer(
            self.width, self.height, overlay, self.config.overlay_mode, self.config.text_overlay
        )
        if layer is None:
            return None
        alpha = layer[..., 3:4].astype(np.float32) / 255.0
        premultiplied = layer[..., :3].astype(np.float32) / 255.0 * alpha
        return premultiplied, 1.0 - alpha

    def draw_rect(self) -> tuple[float, float, float, float]:
        """Where the source lands on the canvas, as (x, y, w, h) before clipping."""
        if self.config.maintain_aspect_ratio:
            base_w = float(self.width)
            base_h = self.width * self.source_height / self.source_width
        else:
            base_w, base_h = float(self.width), float(self.height)
        scale = 1.0 + self.config.zoom_level
        w, h = base_w * scale, base_h * scale
        return (self.width - w) / 2, (self.height - h) / 2, w, h

    def _geometry(self) -> tuple[tuple[int, int, int, int], tuple[float, float, float, float]]:
        x, y, w, h = self.draw_rect()
        left, top = max(0, round(x)), max(0, round(y))
        right, bottom = min(self.width, round(x + w)), min(self.height, round(y + h))

        # Map the visible canvas rectangle back into source pixel coordinates
        sx = self.source_width / w
        sy = self.source_height / h
        source_box = (
            min(max((left - x) * sx, 0.0), self.source_width),
            min(max((top - y) * sy, 0.0), self.source_height),
            min(max((right - x) * sx, 0.0), self.source_width),
            min(max((bottom - y) * sy, 0.0), self.source_height),
        )
        logger.debug(
            "Source %dx%d drawn at %s from source box %s",
            self.source_width, self.source_height, (left, top, right, bottom), source_box,
        )
        return (left, top, right, bottom), source_box

    def _draw_source(self, pixels: np.ndarray) -> None:
        left, top, right, bottom = self.dest_box
        if right <= left or bottom <= top:
            return
        image = Image.fromarray(pixels)
        if self.config.flip_horizontal:
            image = image.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
        scaled = image.resize(
            (right - left, bottom - top), Image.Resampling.BILINEAR, box=self.source_box
        )
        layer = np.asarray(scaled, dtype=np.float32) / 255.0
        layer = filters.apply_color_filter(layer, self.config.color_filter)
        self._canvas[top:bottom, left:right] = layer

    def _apply_grain(self) -> None:
        gray, alpha = self._grain
        dx = self._rng.randrange(GRAIN_MAX_SHIFT)
        dy = self._rng.randrange(GRAIN_MAX_SHIFT)
        filters.overlay_blend(
            self._canvas,
            gray[dy:dy + self.height, dx:dx + self.width],
            alpha[dy:dy + self.height, dx:dx + self.width],
        )

    def compose(self, pixels: np.ndarray) -> np.ndarray:
        """Composite one decoded frame and return the HxWx3 uint8 raster."""
        canvas = self._canvas
        canvas.fill(0.0)

        self._draw_source(pixels)

        if self.config.motion_blur:
            canvas *= 1.0 - MOTION_BLUR_OPACITY
        if self._grain is not None:
            self._apply_grain()
        if self._vignette is not None:
            canvas *= self._vignette
        if self._static is not None:
            premultiplied, inverse_alpha = self._static
            canvas *= inverse_alpha
            canvas += premultiplied

        np.clip(canvas * 255.0 + 0.5, 0.0, 255.0, out=canvas)
        self._output[...] = canvas
        return self._output
