"""
Workers Module - Async Thread Management
========================================
QThread workers that keep long-running exports off the UI thread.

Components:
- ExportWorker: Batch export with progress tracking
"""

from .export_worker import ExportWorker, ExportConfig

__all__ = [
    "ExportWorker",
    "ExportConfig",
]
