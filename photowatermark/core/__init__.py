"""
Core Module - Pure Algorithm Logic
==================================
This module contains no UI dependencies.
Compositing, export and settings persistence are implemented here.
"""

from .compositor import WatermarkCompositor, anchor_position
from .errors import (
    WatermarkError,
    UnreadableSourceImage,
    MissingWatermarkAsset,
    EncoderUnavailable,
    StoreCorrupt,
    InvalidConfiguration,
)
from .export import (
    ExportPipeline,
    ExportResult,
    collect_images,
    create_thumbnail,
    encode_image,
    export_file_name,
    list_importable_extensions,
    load_image,
)
from .session import PreviewSession, PreviewResult
from .settings import (
    FontStyle,
    NamingRule,
    OutputFormat,
    ResizeMode,
    WatermarkMode,
    WatermarkSettings,
)
from .templates import TemplateStore

__all__ = [
    "WatermarkCompositor",
    "anchor_position",
    "WatermarkError",
    "UnreadableSourceImage",
    "MissingWatermarkAsset",
    "EncoderUnavailable",
    "StoreCorrupt",
    "InvalidConfiguration",
    "ExportPipeline",
    "ExportResult",
    "collect_images",
    "create_thumbnail",
    "encode_image",
    "export_file_name",
    "list_importable_extensions",
    "load_image",
    "PreviewSession",
    "PreviewResult",
    "FontStyle",
    "NamingRule",
    "OutputFormat",
    "ResizeMode",
    "WatermarkMode",
    "WatermarkSettings",
    "TemplateStore",
]
