"""
Photo Watermark Package
=======================
Overlay a text or image watermark onto photos and batch-export them.

Modules:
    - core: Compositing, export and template persistence (no UI)
    - workers: QThread workers for background batch export

Usage:
    from photowatermark.core import WatermarkCompositor, ExportPipeline, TemplateStore
    from photowatermark.workers import ExportWorker
"""

__version__ = "1.0.0"
__app_name__ = "Photo Watermark"

# Core exports
from .core import (
    WatermarkSettings,
    WatermarkCompositor,
    ExportPipeline,
    ExportResult,
    TemplateStore,
    PreviewSession,
)
# Worker exports
from .workers import ExportWorker, ExportConfig

__all__ = [
    # Version info
    "__version__",
    "__app_name__",

    # Core
    "WatermarkSettings",
    "WatermarkCompositor",
    "ExportPipeline",
    "ExportResult",
    "TemplateStore",
    "PreviewSession",

    # Workers
    "ExportWorker",
    "ExportConfig",
]
