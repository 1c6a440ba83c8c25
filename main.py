"""
Photo Watermark - Command Line Entry Point
==========================================
Batch-export watermarked copies of photos without the desktop UI.

Usage:
    python main.py photos/ extra.jpg -o out/ --template "Signature"
    python main.py photos/ -o out/ --last-used --format png
    python main.py --list-templates

Architecture:
    - Model: photowatermark/core/ (compositing, export, templates)
    - Workers: photowatermark/workers/ (QThread batch export)
    - Controller: This file (argument handling, signal/slot connections)
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from PyQt6.QtCore import QCoreApplication

from photowatermark import __app_name__, __version__
from photowatermark.core import (
    InvalidConfiguration,
    TemplateStore,
    WatermarkSettings,
    collect_images,
)
from photowatermark.core.export import ExportResult, shares_source_directory
from photowatermark.workers import ExportWorker, ExportConfig

logger = logging.getLogger("photowatermark")


class ExportController:
    """
    Connects an ExportWorker to console output.

    Responsibilities:
    - Start the worker and keep a reference to it
    - Report progress and per-file failures
    - Quit the event loop when the batch is done
    """

    def __init__(self, app: QCoreApplication, config: ExportConfig):
        self.app = app
        self.results: List[ExportResult] = []

        self._worker = ExportWorker(config)
        self._worker.progress.connect(self._on_progress)
        self._worker.file_completed.connect(self._on_file_completed)
        self._worker.finished_all.connect(self._on_finished)
        self._worker.error.connect(self._on_error)

    def start(self):
        self._worker.start()

    def _on_progress(self, current: int, total: int, filename: str):
        logger.info("[%d/%d] %s", current, total, filename)

    def _on_file_completed(self, result: ExportResult):
        if not result.success:
            logger.error("Failed: %s (%s)", result.source_path, result.error_message)

    def _on_error(self, message: str):
        logger.error(message)

    def _on_finished(self, results: list):
        self.results = results
        self._worker.wait()
        self.app.quit()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="photowatermark",
        description="Add a text or image watermark to photos and export them."
    )
    parser.add_argument("inputs", nargs="*", help="Image files or folders")
    parser.add_argument("-o", "--output-dir", type=Path, help="Destination folder")

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--template", help="Use a saved template")
    source.add_argument("--last-used", action="store_true", help="Use the last used settings")

    parser.add_argument("--text", help="Watermark text (switches to text mode)")
    parser.add_argument("--image", help="Watermark image file (switches to image mode)")
    parser.add_argument("--position", type=int, nargs=2, metavar=("X", "Y"),
                        help="Anchor position in percent, 0-100")
    parser.add_argument("--rotation", type=int, help="Clockwise rotation in degrees")
    parser.add_argument("--opacity", type=float, help="Watermark opacity, 0-1")
    parser.add_argument("--format", choices=["jpeg", "png"], help="Output format")
    parser.add_argument("--quality", type=float, help="JPEG quality, 0-1")
    parser.add_argument("--naming", choices=["original", "prefix", "suffix"],
                        help="Output naming rule")
    parser.add_argument("--custom-text", help="Prefix/suffix for the naming rule")

    parser.add_argument("--save-template", metavar="NAME",
                        help="Save the resulting settings as a template")
    parser.add_argument("--list-templates", action="store_true", help="List saved templates")
    parser.add_argument("--store-dir", type=Path, help="Override the template store folder")
    parser.add_argument("--workers", type=int, default=1, help="Parallel export threads")
    parser.add_argument("--force", action="store_true",
                        help="Allow exporting into a source folder")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def resolve_settings(args: argparse.Namespace, store: TemplateStore) -> Optional[WatermarkSettings]:
    """
    Build settings from the chosen source plus command-line overrides.

    Returns:
        The settings, or None if the requested template does not exist.
    """
    if args.template:
        settings = store.load(args.template)
        if settings is None:
            logger.error("Template not found: %s", args.template)
            return None
    elif args.last_used:
        settings = store.load_last_used() or WatermarkSettings()
    else:
        settings = WatermarkSettings()

    changes = {}
    if args.text is not None:
        changes.update(mode="text", text=args.text)
    if args.image is not None:
        changes.update(mode="image", watermark_image_path=args.image)
    if args.position is not None:
        changes.update(position_x=args.position[0], position_y=args.position[1])
    if args.rotation is not None:
        changes["rotation"] = args.rotation
    if args.opacity is not None:
        opacity_field = "image_opacity" if changes.get("mode", settings.mode.value) == "image" \
            else "text_opacity"
        changes[opacity_field] = args.opacity
    if args.format is not None:
        changes["output_format"] = args.format
    if args.quality is not None:
        changes["jpeg_quality"] = args.quality
    if args.naming is not None:
        changes["naming_rule"] = args.naming
    if args.custom_text is not None:
        changes["custom_text"] = args.custom_text

    return settings.replace(**changes) if changes else settings


def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s"
    )

    store = TemplateStore(args.store_dir)
    if store.reset_occurred:
        logger.warning("Saved templates were unreadable and have been reset")

    if args.list_templates:
        for name in store.list_names():
            print(name)
        return 0

    try:
        settings = resolve_settings(args, store)
    except InvalidConfiguration as e:
        logger.error("Invalid settings: %s", e)
        return 2
    if settings is None:
        return 2

    if args.save_template:
        store.save(args.save_template, settings)
        logger.info("Saved template %r", args.save_template)

    if not args.inputs:
        return 0

    if args.output_dir is None:
        logger.error("An output folder is required (-o)")
        return 2

    images = collect_images(args.inputs)
    if not images:
        logger.error("No importable images found")
        return 2

    if shares_source_directory(images, args.output_dir) and not args.force:
        logger.error("Output folder contains source images and may overwrite them; "
                     "use --force to continue")
        return 2

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName(__app_name__)
    app.setApplicationVersion(__version__)

    controller = ExportController(app, ExportConfig(
        image_paths=images,
        output_dir=args.output_dir,
        settings=settings,
        max_workers=max(1, args.workers)
    ))
    controller.start()
    app.exec()

    store.save_last_used(settings)

    failed = [r for r in controller.results if not r.success]
    return 1 if failed or len(controller.results) != len(images) else 0


if __name__ == "__main__":
    sys.exit(main())
