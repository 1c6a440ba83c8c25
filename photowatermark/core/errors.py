"""
Error Types
===========
Failure categories raised or reported by the core.

Only UnreadableSourceImage surfaces from a direct composite/export call.
The others are either recovered internally (MissingWatermarkAsset,
StoreCorrupt) or reported per file in a batch (EncoderUnavailable).
"""


class WatermarkError(Exception):
    """Base class for all watermark processing errors."""


class UnreadableSourceImage(WatermarkError, OSError):
    """The base image could not be opened or decoded."""


class MissingWatermarkAsset(WatermarkError):
    """Image mode is selected but the watermark image is unset or unreadable."""


class EncoderUnavailable(WatermarkError):
    """No working encoder exists for the requested output format."""


class StoreCorrupt(WatermarkError):
    """The template or last-used store could not be parsed."""


class InvalidConfiguration(WatermarkError, ValueError):
    """A settings value is out of range and has no safe clamp."""
