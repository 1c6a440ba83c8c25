"""
Export Pipeline
===============
Loads source images, composites the watermark and encodes the result.

Technical Notes:
- Output names come from the naming rule: the stem is split at the LAST
  dot and the extension is replaced by the output format's
- PNG keeps the alpha channel; JPEG is flattened onto an opaque
  background first and always written with an explicit quality
- `export_file` is the per-file task: it never raises, failures are
  reported in the returned ExportResult so a batch keeps going
- `export_batch` runs tasks sequentially, or on any
  concurrent.futures.Executor the caller provides
"""

import io
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Tuple, Union

from PIL import Image, ImageOps, UnidentifiedImageError, features

from .compositor import WatermarkCompositor
from .errors import EncoderUnavailable, UnreadableSourceImage, WatermarkError
from .settings import NamingRule, OutputFormat, ResizeMode, WatermarkSettings

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

IMPORTABLE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff")


# =============================================================================
# INPUT
# =============================================================================

def list_importable_extensions() -> Tuple[str, ...]:
    """File extensions (lowercase, with dot) accepted as source images."""
    return IMPORTABLE_EXTENSIONS


def is_importable(path: PathLike) -> bool:
    path = Path(path)
    return path.is_file() and path.suffix.lower() in IMPORTABLE_EXTENSIONS


def collect_images(inputs: Iterable[PathLike]) -> List[Path]:
    """
    Expand files and folders into a list of importable images.

    Folders are walked recursively. Order is preserved and duplicates are
    dropped.
    """
    found: List[Path] = []
    for item in inputs:
        item = Path(item)
        if item.is_dir():
            found.extend(sorted(p for p in item.rglob("*") if is_importable(p)))
        elif is_importable(item):
            found.append(item)

    seen = set()
    unique: List[Path] = []
    for path in found:
        key = path.resolve()
        if key not in seen:
            seen.add(key)
            unique.append(path)
    return unique


def load_image(path: PathLike) -> Image.Image:
    """
    Decode an image file, applying its EXIF orientation.

    Raises:
        UnreadableSourceImage: If the file is missing or cannot be decoded.
    """
    try:
        with Image.open(path) as img:
            img.load()
            return ImageOps.exif_transpose(img)
    except (OSError, UnidentifiedImageError, ValueError) as e:
        raise UnreadableSourceImage(f"Cannot read image: {path}") from e


def create_thumbnail(path: PathLike, max_size: Tuple[int, int] = (128, 128)) -> Optional[Image.Image]:
    """Aspect-preserving thumbnail, or None if the file cannot be read."""
    try:
        image = load_image(path)
    except UnreadableSourceImage:
        return None
    image.thumbnail(max_size, Image.Resampling.BILINEAR)
    return image


def resize_image(image: Image.Image, width: int, height: int) -> Image.Image:
    return image.resize((max(1, width), max(1, height)), Image.Resampling.BILINEAR)


def shares_source_directory(sources: Iterable[PathLike], output_dir: PathLike) -> bool:
    """True if any source lives directly in `output_dir` (exports may overwrite it)."""
    target = Path(output_dir).resolve()
    return any(Path(s).resolve().parent == target for s in sources)


# =============================================================================
# NAMING
# =============================================================================

def split_name(name: str) -> Tuple[str, str]:
    """
    Split a file name at its last dot into (stem, extension).

    A leading dot (".hidden") does not start an extension.
    """
    index = name.rfind(".")
    if index > 0:
        return name[:index], name[index:]
    return name, ""


def export_file_name(original_name: str, settings: WatermarkSettings) -> str:
    """
    Derive the output file name from the source name and naming rule.

    Examples:
        "photo.PNG", prefix "wm_", JPEG  -> "wm_photo.jpg"
        "a.b.jpg", suffix "_done", PNG   -> "a.b_done.png"
    """
    stem, _ = split_name(original_name)
    extension = settings.output_format.extension
    rule = settings.naming_rule

    if rule == NamingRule.KEEP_ORIGINAL:
        return f"{stem}{extension}"
    if rule == NamingRule.PREFIX:
        return f"{settings.custom_text}{stem}{extension}"
    if rule == NamingRule.SUFFIX:
        return f"{stem}{settings.custom_text}{extension}"
    # Unrecognized rule (e.g. written by a newer version)
    return f"{stem}_{settings.custom_text}{extension}"


# =============================================================================
# ENCODING
# =============================================================================

@dataclass
class ExportResult:
    """Result of exporting a single image."""
    source_path: Path
    output_path: Optional[Path] = None
    success: bool = False
    error_message: str = ""
    error: Optional[Exception] = None


class ExportPipeline:
    """
    Composites and encodes images with one WatermarkSettings.

    The settings are read-only, so one pipeline can be shared by worker
    threads.
    """

    # Background used when flattening alpha for JPEG
    JPEG_BACKGROUND = (255, 255, 255)

    # Output format -> (Pillow format name, Pillow codec feature)
    ENCODERS = {
        OutputFormat.JPEG: ("JPEG", "jpg"),
        OutputFormat.PNG: ("PNG", "zlib"),
    }

    def __init__(
            self,
            settings: WatermarkSettings,
            compositor: Optional[WatermarkCompositor] = None
    ):
        self.settings = settings
        self.compositor = compositor or WatermarkCompositor()

    def check_encoder(self, output_format: OutputFormat) -> str:
        """
        Return the Pillow format name for `output_format`.

        Raises:
            EncoderUnavailable: If Pillow has no working encoder for it.
        """
        try:
            pil_format, codec = self.ENCODERS[output_format]
        except KeyError:
            raise EncoderUnavailable(f"Unsupported output format: {output_format}") from None

        Image.init()
        if pil_format not in Image.SAVE or not features.check_codec(codec):
            raise EncoderUnavailable(f"No {pil_format} encoder available")
        return pil_format

    def flatten(self, image: Image.Image) -> Image.Image:
        """Drop alpha by compositing onto JPEG_BACKGROUND."""
        if image.mode == "RGB":
            return image
        rgba = image.convert("RGBA")
        flat = Image.new("RGB", rgba.size, self.JPEG_BACKGROUND)
        flat.paste(rgba, mask=rgba.getchannel("A"))
        return flat

    def apply_resize(self, image: Image.Image) -> Image.Image:
        """Apply the configured export resize, keeping the aspect ratio."""
        mode = self.settings.resize_mode
        value = self.settings.resize_value
        if mode is ResizeMode.NONE or value <= 0:
            return image

        width, height = image.size
        if mode is ResizeMode.WIDTH:
            return resize_image(image, value, int(height * value / width))
        if mode is ResizeMode.HEIGHT:
            return resize_image(image, int(width * value / height), value)
        ratio = value / 100.0
        return resize_image(image, int(width * ratio), int(height * ratio))

    def encode(
            self,
            image: Image.Image,
            destination: Optional[Union[PathLike, BinaryIO]] = None
    ) -> Union[bytes, Path, BinaryIO]:
        """
        Encode `image` in the configured output format.

        Args:
            image: Image to encode (any mode).
            destination: File path or writable binary stream. If None the
                encoded bytes are returned.

        Returns:
            The bytes, the written Path, or the stream that was written to.

        Raises:
            EncoderUnavailable: If no encoder exists for the format.
        """
        output_format = self.settings.output_format
        pil_format = self.check_encoder(output_format)

        if output_format is OutputFormat.JPEG:
            image = self.flatten(image)
            params = {
                "quality": int(round(self.settings.jpeg_quality * 100)),
                "optimize": True,
            }
        else:
            if image.mode not in ("RGBA", "RGB", "LA", "L", "P", "1"):
                image = image.convert("RGBA")
            params = {}

        if destination is None:
            buffer = io.BytesIO()
            image.save(buffer, format=pil_format, **params)
            return buffer.getvalue()

        if isinstance(destination, (str, Path)):
            destination = Path(destination)
            try:
                image.save(destination, format=pil_format, **params)
            except Exception:
                # Don't leave a truncated file behind
                if destination.exists():
                    destination.unlink()
                raise
            return destination

        image.save(destination, format=pil_format, **params)
        return destination

    def render(self, source: PathLike) -> Image.Image:
        """
        Load `source`, composite the watermark and apply the export resize.

        Raises:
            UnreadableSourceImage: If the source cannot be decoded.
        """
        base = load_image(source)
        try:
            composited = self.compositor.composite(base, self.settings)
        finally:
            base.close()
        return self.apply_resize(composited)

    def export_file(self, source: PathLike, output_dir: PathLike) -> ExportResult:
        """
        Export one image into `output_dir`.

        Never raises for per-file problems; check `ExportResult.success`.
        """
        source = Path(source)
        output_dir = Path(output_dir)
        result = ExportResult(source_path=source)

        try:
            image = self.render(source)
            output_dir.mkdir(parents=True, exist_ok=True)
            target = output_dir / export_file_name(source.name, self.settings)
            self.encode(image, target)
            image.close()
            result.output_path = target
            result.success = True

        except (WatermarkError, OSError) as e:
            logger.error("Export failed for %s: %s", source.name, e)
            result.error_message = str(e)
            result.error = e

        except Exception as e:
            logger.exception("Unexpected error exporting %s", source.name)
            result.error_message = str(e)
            result.error = e

        return result

    def export_batch(
            self,
            sources: Iterable[PathLike],
            output_dir: PathLike,
            executor: Optional[Executor] = None
    ) -> List[ExportResult]:
        """
        Export every source, sequentially or on `executor`.

        Results are returned in input order; completion order is not
        guaranteed when an executor is used.
        """
        sources = list(sources)
        if executor is None:
            results = [self.export_file(s, output_dir) for s in sources]
        else:
            futures = [executor.submit(self.export_file, s, output_dir) for s in sources]
            results = [f.result() for f in futures]

        ok = sum(1 for r in results if r.success)
        logger.info("Exported %d/%d images to %s", ok, len(results), output_dir)
        return results


# Convenience function for simple usage
def encode_image(
        image: Image.Image,
        settings: WatermarkSettings,
        destination: Optional[Union[PathLike, BinaryIO]] = None
) -> Union[bytes, Path, BinaryIO]:
    """Encode `image` with the export options of `settings`."""
    return ExportPipeline(settings).encode(image, destination)
