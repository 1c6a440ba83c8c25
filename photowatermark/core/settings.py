"""
Watermark Settings Model
========================
Immutable value object describing one watermark configuration.

Technical Notes:
- Instances are frozen; use `replace()` to derive a modified copy
- Opacity and JPEG quality are clamped to [0, 1] on construction
- Positions are percentages (0-100) of the travel range, not pixels
- The watermark image is stored as a path only; loading it is the
  compositor's job, so settings stay serializable
- `to_dict` / `from_dict` implement a versioned, default-filling schema:
  missing keys take defaults and unknown keys are ignored
"""

import dataclasses
import logging
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

SCHEMA_VERSION = 1


class WatermarkMode(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class OutputFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"

    @property
    def extension(self) -> str:
        return ".jpg" if self is OutputFormat.JPEG else ".png"


class NamingRule(str, Enum):
    KEEP_ORIGINAL = "original"
    PREFIX = "prefix"
    SUFFIX = "suffix"


class ResizeMode(str, Enum):
    NONE = "none"
    WIDTH = "width"
    HEIGHT = "height"
    PERCENT = "percent"


class FontStyle(str, Enum):
    BOLD = "bold"
    ITALIC = "italic"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _clamp_unit(value: Any, field_name: str) -> float:
    """Clamp to [0, 1]; NaN and infinities have no meaningful clamp."""
    value = float(value)
    if not math.isfinite(value):
        raise InvalidConfiguration(f"{field_name} must be a finite number, got {value}")
    return _clamp(value, 0.0, 1.0)


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        raise InvalidConfiguration(
            f"Invalid {field_name}: {value!r}"
        ) from None


def parse_color(value: Any, field_name: str = "color") -> RGB:
    """
    Parse a color given as "#RRGGBB" or a 3-item sequence.

    Raises:
        InvalidConfiguration: If the value is malformed or out of range.
    """
    if isinstance(value, str):
        text = value.strip().lstrip("#")
        if len(text) != 6:
            raise InvalidConfiguration(f"Invalid {field_name}: {value!r}")
        try:
            return (int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
        except ValueError:
            raise InvalidConfiguration(f"Invalid {field_name}: {value!r}") from None

    try:
        r, g, b = (int(c) for c in value)
    except (TypeError, ValueError):
        raise InvalidConfiguration(f"Invalid {field_name}: {value!r}") from None

    if not all(0 <= c <= 255 for c in (r, g, b)):
        raise InvalidConfiguration(f"{field_name} components must be 0-255: {value!r}")
    return (r, g, b)


def format_color(color: RGB) -> str:
    return "#{:02x}{:02x}{:02x}".format(*color)


@dataclass(frozen=True)
class WatermarkSettings:
    """
    Complete configuration for one watermark.

    Text mode uses the font, color and shadow fields; image mode uses the
    watermark image path and scale. Placement and export fields are shared.
    """
    mode: WatermarkMode = WatermarkMode.TEXT

    # Text watermark
    text: str = "Watermark"
    font_family: str = "Arial"
    font_size: int = 24  # points, rendered 1pt = 1px
    bold: bool = False
    italic: bool = False
    color: RGB = (0, 0, 0)
    text_opacity: float = 0.7
    shadow_enabled: bool = False
    shadow_color: RGB = (255, 255, 255)

    # Image watermark
    watermark_image_path: Optional[str] = None
    scale: float = 0.5
    image_opacity: float = 0.7

    # Placement (percent of travel range, clockwise degrees)
    position_x: int = 50
    position_y: int = 50
    rotation: int = 0

    # Export
    output_format: OutputFormat = OutputFormat.JPEG
    jpeg_quality: float = 0.9
    naming_rule: Union[NamingRule, str] = NamingRule.KEEP_ORIGINAL
    custom_text: str = "watermarked"
    resize_mode: ResizeMode = ResizeMode.NONE
    resize_value: int = 0

    def __post_init__(self):
        set_ = object.__setattr__

        set_(self, "mode", _coerce_enum(WatermarkMode, self.mode, "mode"))
        set_(self, "output_format",
             _coerce_enum(OutputFormat, self.output_format, "output_format"))
        set_(self, "resize_mode",
             _coerce_enum(ResizeMode, self.resize_mode, "resize_mode"))

        # Unknown naming rules are kept verbatim; they select the fallback naming
        if not isinstance(self.naming_rule, NamingRule):
            try:
                set_(self, "naming_rule", NamingRule(str(self.naming_rule)))
            except ValueError:
                set_(self, "naming_rule", str(self.naming_rule))

        set_(self, "text", str(self.text))
        set_(self, "font_family", str(self.font_family))
        set_(self, "custom_text", str(self.custom_text))
        set_(self, "bold", bool(self.bold))
        set_(self, "italic", bool(self.italic))
        set_(self, "shadow_enabled", bool(self.shadow_enabled))

        font_size = int(self.font_size)
        if font_size < 1:
            raise InvalidConfiguration(f"Font size must be at least 1, got {font_size}")
        set_(self, "font_size", font_size)

        scale = float(self.scale)
        if not (math.isfinite(scale) and scale > 0):
            raise InvalidConfiguration(f"Scale must be positive, got {scale}")
        set_(self, "scale", scale)

        resize_value = int(self.resize_value)
        if resize_value < 0:
            raise InvalidConfiguration(f"Resize value cannot be negative, got {resize_value}")
        set_(self, "resize_value", resize_value)

        set_(self, "color", parse_color(self.color, "color"))
        set_(self, "shadow_color", parse_color(self.shadow_color, "shadow_color"))

        for name in ("text_opacity", "image_opacity", "jpeg_quality"):
            set_(self, name, _clamp_unit(getattr(self, name), name))

        set_(self, "position_x", int(_clamp(int(self.position_x), 0, 100)))
        set_(self, "position_y", int(_clamp(int(self.position_y), 0, 100)))
        set_(self, "rotation", int(self.rotation) % 360)

        path = self.watermark_image_path
        if isinstance(path, Path):
            path = str(path)
        set_(self, "watermark_image_path", path or None)

    # ===== Derived values =====

    @property
    def font_style(self) -> FrozenSet[FontStyle]:
        """Combined style tags from the bold/italic flags."""
        style = set()
        if self.bold:
            style.add(FontStyle.BOLD)
        if self.italic:
            style.add(FontStyle.ITALIC)
        return frozenset(style)

    @property
    def opacity(self) -> float:
        """Opacity of the active mode."""
        if self.mode is WatermarkMode.IMAGE:
            return self.image_opacity
        return self.text_opacity

    def replace(self, **changes) -> "WatermarkSettings":
        """Return a copy with the given fields replaced (and re-validated)."""
        return dataclasses.replace(self, **changes)

    # ===== Serialization =====

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict tagged with the schema version."""
        data: Dict[str, Any] = {"schema": SCHEMA_VERSION}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif f.name in ("color", "shadow_color"):
                value = format_color(value)
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatermarkSettings":
        """
        Build settings from a dict produced by `to_dict`.

        Missing keys fall back to defaults so files written by older
        versions still load.

        Raises:
            InvalidConfiguration: If the payload is not a mapping or a value
                cannot be accepted.
        """
        if not isinstance(data, dict):
            raise InvalidConfiguration(
                f"Settings payload must be a mapping, got {type(data).__name__}"
            )

        schema = data.get("schema", SCHEMA_VERSION)
        if isinstance(schema, int) and schema > SCHEMA_VERSION:
            logger.debug("Reading settings written with newer schema %s", schema)

        names = {f.name for f in dataclasses.fields(cls)}
        kwargs = {key: value for key, value in data.items() if key in names}
        try:
            return cls(**kwargs)
        except (TypeError, ValueError, OverflowError) as e:
            if isinstance(e, InvalidConfiguration):
                raise
            raise InvalidConfiguration(str(e)) from e
