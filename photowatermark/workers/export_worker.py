"""
Export Worker - Async Batch Export
==================================
QThread worker that runs a batch export off the UI thread.

Workflow:
1. For each image in the queue (optionally on a thread pool):
   a. Load and composite the watermark
   b. Name and encode the result into the output directory
2. Emit progress signals as files complete
3. Emit finished signal with all results, in input order

A failing file never stops the batch; it shows up as an unsuccessful
ExportResult.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from PyQt6.QtCore import QThread, pyqtSignal

from photowatermark.core.export import ExportPipeline, ExportResult
from photowatermark.core.settings import WatermarkSettings

logger = logging.getLogger(__name__)


@dataclass
class ExportConfig:
    """Complete configuration for a batch export."""
    image_paths: List[Path] = field(default_factory=list)
    output_dir: Path = field(default_factory=lambda: Path.cwd() / "output")
    settings: WatermarkSettings = field(default_factory=WatermarkSettings)

    # 1 = sequential; more runs files on a thread pool
    max_workers: int = 1


class ExportWorker(QThread):
    """
    Worker thread for exporting watermarked images.

    Signals:
        progress(int, int, str): (completed, total, current_file_name)
        file_completed(ExportResult): Emitted when each image is processed
        finished_all(list[ExportResult]): Emitted when all images are done
        error(str): Emitted on errors that stop the whole batch
    """

    progress = pyqtSignal(int, int, str)
    file_completed = pyqtSignal(object)
    finished_all = pyqtSignal(list)
    error = pyqtSignal(str)

    def __init__(
            self,
            config: ExportConfig,
            pipeline: Optional[ExportPipeline] = None,
            parent=None
    ):
        """
        Initialize the export worker.

        Args:
            config: ExportConfig with images, destination and settings.
            pipeline: Optional pipeline to use instead of building one from
                `config.settings`.
            parent: Optional parent QObject.
        """
        super().__init__(parent)
        self.config = config
        self.pipeline = pipeline or ExportPipeline(config.settings)
        self._is_cancelled = False

    def cancel(self):
        """Request cancellation; files already started still finish."""
        self._is_cancelled = True

    def _report(self, done: int, total: int, result: ExportResult):
        self.progress.emit(done, total, result.source_path.name)
        self.file_completed.emit(result)

    def _run_sequential(self, paths: List[Path]) -> List[ExportResult]:
        results: List[ExportResult] = []
        for path in paths:
            if self._is_cancelled:
                break
            result = self.pipeline.export_file(path, self.config.output_dir)
            results.append(result)
            self._report(len(results), len(paths), result)
        return results

    def _run_parallel(self, paths: List[Path]) -> List[ExportResult]:
        by_index = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = {
                pool.submit(self.pipeline.export_file, path, self.config.output_dir): index
                for index, path in enumerate(paths)
            }
            pending_cancelled = False
            for future in as_completed(futures):
                # Cancelled before starting; nothing was written
                if future.cancelled():
                    continue
                result = future.result()
                by_index[futures[future]] = result
                self._report(len(by_index), len(paths), result)
                if self._is_cancelled and not pending_cancelled:
                    # Files already running still finish and are reported
                    for pending in futures:
                        pending.cancel()
                    pending_cancelled = True
        return [by_index[i] for i in sorted(by_index)]

    def run(self):
        """
        Main worker execution.

        Processes all images in the config and emits progress signals.
        """
        results: List[ExportResult] = []
        paths = [Path(p) for p in self.config.image_paths]

        if not paths:
            self.error.emit("No images to export")
            self.finished_all.emit(results)
            return

        try:
            if self.config.max_workers > 1:
                results = self._run_parallel(paths)
            else:
                results = self._run_sequential(paths)

        except Exception as e:
            logger.exception("Batch export aborted")
            self.error.emit(f"Critical error: {e}")

        ok = sum(1 for r in results if r.success)
        logger.info("Batch export finished: %d/%d succeeded", ok, len(paths))
        self.finished_all.emit(results)
