"""
Watermark Compositor
====================
Blends a single text or image watermark onto a base image using PIL/Pillow.

Technical Notes:
- The base image is never mutated; the result is always a new RGBA image
  of the same size, so blending works even when the source has no alpha
- Placement is percentage based: x = (W - w) * px / 100, which aligns
  edges at 0/100 and centers at 50 regardless of image size
- Each layer is rendered into its own tile with a symmetric margin, so the
  tile center is the watermark's bounding-box center. Rotation happens on
  the tile (expand=True) and the tile is re-centered, so rotation never
  moves the anchor; only the base image edges clip
- Opacity is a global alpha multiplier per draw, blended with source-over
- A missing watermark image in image mode is not an error: the result is a
  plain RGBA copy of the base image
"""

import logging
import math
from pathlib import Path
from typing import Dict, List, Tuple

from PIL import Image, ImageDraw, ImageFont, ImageOps
from PyQt6.QtCore import QMutex, QMutexLocker

from .errors import MissingWatermarkAsset
from .settings import FontStyle, WatermarkMode, WatermarkSettings

logger = logging.getLogger(__name__)

FontType = ImageFont.FreeTypeFont


def _truncate_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(numerator) // denominator
    return quotient if numerator >= 0 else -quotient


def anchor_position(
        base_size: Tuple[int, int],
        watermark_size: Tuple[int, int],
        position_x: int,
        position_y: int
) -> Tuple[int, int]:
    """
    Compute the watermark's top-left corner from percentage anchors.

    Args:
        base_size: (width, height) of the base image.
        watermark_size: (width, height) of the watermark bounding box.
        position_x: Horizontal anchor, 0-100.
        position_y: Vertical anchor, 0-100.

    Returns:
        (x, y) in base image pixels. Negative when the watermark is larger
        than the base image.
    """
    base_w, base_h = base_size
    wm_w, wm_h = watermark_size
    x = _truncate_div((base_w - wm_w) * position_x, 100)
    y = _truncate_div((base_h - wm_h) * position_y, 100)
    return x, y


class WatermarkCompositor:
    """
    Composites one watermark described by WatermarkSettings onto images.

    Fonts are cached per (family, size, style), so one instance can be
    reused across a batch and across threads.
    """

    # Shadow is drawn this many pixels right/down of the main text
    SHADOW_OFFSET = 2

    # Font files tried when the requested family cannot be found
    FALLBACK_FONTS = (
        "msyh.ttc",  # Windows
        "/System/Library/Fonts/PingFang.ttc",  # macOS
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",  # Linux
    )

    # Styled file-name variants tried for a family, in order
    _STYLE_SUFFIXES = {
        frozenset(): ("",),
        frozenset({FontStyle.BOLD}): ("-Bold", "bd", "b"),
        frozenset({FontStyle.ITALIC}): ("-Italic", "-Oblique", "i"),
        frozenset({FontStyle.BOLD, FontStyle.ITALIC}): (
            "-BoldItalic", "-BoldOblique", "bi", "z"
        ),
    }

    def __init__(self):
        self._cached_fonts: Dict[Tuple[str, int, frozenset], FontType] = {}
        self._font_lock = QMutex()

    # ===== Fonts and metrics =====

    def _font_candidates(self, family: str, style: frozenset) -> List[str]:
        candidates: List[str] = []
        if Path(family).suffix:
            # Explicit font file; styling must come from the file itself
            candidates.append(family)
            return candidates

        for suffix in self._STYLE_SUFFIXES[style]:
            for name in (family, family.replace(" ", ""), family.lower()):
                candidate = f"{name}{suffix}.ttf"
                if candidate not in candidates:
                    candidates.append(candidate)
        return candidates

    def get_font(self, family: str, size: int, style: frozenset = frozenset()) -> FontType:
        """
        Get or create a cached font for the family, size and style.

        Falls back to the platform default fonts, then to Pillow's built-in
        font, when the family cannot be loaded.
        """
        key = (family, size, style)
        with QMutexLocker(self._font_lock):
            if key in self._cached_fonts:
                return self._cached_fonts[key]

        font = None
        for candidate in self._font_candidates(family, style):
            try:
                font = ImageFont.truetype(candidate, size)
                break
            except OSError:
                continue

        if font is None:
            for candidate in self.FALLBACK_FONTS:
                try:
                    font = ImageFont.truetype(candidate, size)
                    break
                except OSError:
                    continue

        if font is None:
            logger.debug("No TrueType font found for %r, using built-in font", family)
            font = ImageFont.load_default(size=size)

        with QMutexLocker(self._font_lock):
            self._cached_fonts[key] = font
        return font

    def clear_cache(self):
        with QMutexLocker(self._font_lock):
            self._cached_fonts.clear()

    def measure_text(self, settings: WatermarkSettings) -> Tuple[int, int, int]:
        """
        Measure the rendered watermark string.

        Returns:
            (width, height, ascent) in pixels; height is ascent + descent.
        """
        font = self.get_font(settings.font_family, settings.font_size, settings.font_style)
        ascent, descent = font.getmetrics()
        width = int(math.ceil(font.getlength(settings.text))) if settings.text else 0
        return width, ascent + descent, ascent

    # ===== Watermark assets =====

    def load_watermark_image(self, settings: WatermarkSettings) -> Image.Image:
        """
        Load the watermark image referenced by the settings as RGBA.

        Raises:
            MissingWatermarkAsset: If no path is set or the file cannot be read.
        """
        path = settings.watermark_image_path
        if not path:
            raise MissingWatermarkAsset("No watermark image selected")

        try:
            with Image.open(path) as img:
                img.load()
                return ImageOps.exif_transpose(img).convert("RGBA")
        except (OSError, ValueError) as e:
            raise MissingWatermarkAsset(f"Cannot read watermark image: {path}") from e

    def diagnose(self, settings: WatermarkSettings) -> List[str]:
        """
        List problems that make the watermark invisible.

        Composition itself tolerates all of these; this is for previews
        that want to tell the user why nothing is drawn.
        """
        problems: List[str] = []
        if settings.mode is WatermarkMode.IMAGE:
            try:
                asset = self.load_watermark_image(settings)
            except MissingWatermarkAsset as e:
                problems.append(str(e))
            else:
                if int(asset.width * settings.scale) < 1 or int(asset.height * settings.scale) < 1:
                    problems.append("Watermark image is scaled below one pixel")
                asset.close()
        elif not settings.text:
            problems.append("Watermark text is empty")

        if settings.opacity <= 0:
            problems.append("Watermark opacity is zero")
        return problems

    # ===== Layer construction =====

    def _tile_margin(self, font_size: int) -> int:
        # Room for the shadow offset and glyph overhang (italics)
        return self.SHADOW_OFFSET + max(2, font_size // 4)

    def _text_layers(
            self,
            settings: WatermarkSettings
    ) -> Tuple[Tuple[int, int], List[Tuple[Image.Image, int]]]:
        """
        Render the text (and shadow) tiles.

        Returns:
            ((width, height) of the text bounding box, [(tile, margin), ...])
            in drawing order.
        """
        font = self.get_font(settings.font_family, settings.font_size, settings.font_style)
        width, height, _ = self.measure_text(settings)
        margin = self._tile_margin(settings.font_size)
        tile_size = (width + 2 * margin, height + 2 * margin)

        layers = []
        if settings.shadow_enabled:
            shadow = Image.new("RGBA", tile_size, (0, 0, 0, 0))
            offset = margin + self.SHADOW_OFFSET
            # Default "la" anchor puts the ascender line, not the baseline, at y
            ImageDraw.Draw(shadow).text(
                (offset, offset), settings.text, font=font, fill=(*settings.shadow_color, 255)
            )
            layers.append((shadow, margin))

        tile = Image.new("RGBA", tile_size, (0, 0, 0, 0))
        ImageDraw.Draw(tile).text(
            (margin, margin), settings.text, font=font, fill=(*settings.color, 255)
        )
        layers.append((tile, margin))

        return (width, height), layers

    def _image_layers(
            self,
            asset: Image.Image,
            settings: WatermarkSettings
    ) -> Tuple[Tuple[int, int], List[Tuple[Image.Image, int]]]:
        width = int(asset.width * settings.scale)
        height = int(asset.height * settings.scale)
        if width < 1 or height < 1:
            return (max(width, 0), max(height, 0)), []

        if (width, height) != asset.size:
            asset = asset.resize((width, height), Image.Resampling.LANCZOS)
        return (width, height), [(asset, 0)]

    @staticmethod
    def _apply_opacity(tile: Image.Image, opacity: float) -> Image.Image:
        if opacity >= 1.0:
            return tile
        alpha = tile.getchannel("A").point(lambda a: int(round(a * opacity)))
        tile = tile.copy()
        tile.putalpha(alpha)
        return tile

    @staticmethod
    def _composite_at(canvas: Image.Image, tile: Image.Image, left: int, top: int):
        """Source-over blend `tile` onto `canvas` at (left, top), clipped to the canvas."""
        src_x = max(0, -left)
        src_y = max(0, -top)
        dst_x = max(0, left)
        dst_y = max(0, top)
        width = min(tile.width - src_x, canvas.width - dst_x)
        height = min(tile.height - src_y, canvas.height - dst_y)
        if width <= 0 or height <= 0:
            return
        canvas.alpha_composite(
            tile,
            dest=(dst_x, dst_y),
            source=(src_x, src_y, src_x + width, src_y + height)
        )

    # ===== Public API =====

    def composite(self, base_image: Image.Image, settings: WatermarkSettings) -> Image.Image:
        """
        Blend the configured watermark onto a copy of `base_image`.

        Args:
            base_image: Source image in any Pillow mode. Not modified.
            settings: Watermark configuration.

        Returns:
            New RGBA image with the same size as `base_image`.

        Raises:
            ValueError: If `base_image` is None.
        """
        if base_image is None:
            raise ValueError("Base image is required")

        result = base_image.convert("RGBA")
        opacity = settings.opacity

        if settings.mode is WatermarkMode.IMAGE:
            try:
                asset = self.load_watermark_image(settings)
            except MissingWatermarkAsset as e:
                logger.debug("Skipping image watermark: %s", e)
                return result
            box_size, layers = self._image_layers(asset, settings)
        else:
            if not settings.text:
                return result
            box_size, layers = self._text_layers(settings)

        if opacity <= 0 or not layers:
            return result

        x, y = anchor_position(result.size, box_size, settings.position_x, settings.position_y)
        center_x = x + box_size[0] / 2
        center_y = y + box_size[1] / 2

        for tile, margin in layers:
            tile = self._apply_opacity(tile, opacity)

            if settings.rotation:
                # PIL rotates counter-clockwise; settings are clockwise
                tile = tile.rotate(
                    -settings.rotation,
                    resample=Image.Resampling.BICUBIC,
                    expand=True
                )
                left = int(round(center_x - tile.width / 2))
                top = int(round(center_y - tile.height / 2))
            else:
                left, top = x - margin, y - margin

            self._composite_at(result, tile, left, top)

        return result

