"""
Preview Session
===============
Synchronous "apply settings, recomposite" entry point for a UI shell.

The shell calls `apply(...)` on every input change and shows the returned
image. There is no event system here: each call recomposites immediately.

Previews run on a proxy (downscaled copy, max 800px) of the source image.
Pixel-sized parameters (font size, image scale) are scaled by the same
factor so the proxy looks like the full-size export. Positions are
percentages and need no scaling.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from PIL import Image

from .compositor import WatermarkCompositor
from .export import load_image
from .settings import WatermarkSettings
from .templates import TemplateStore


@dataclass
class PreviewResult:
    """Composited proxy image plus reasons the watermark may be invisible."""
    image: Image.Image
    problems: List[str] = field(default_factory=list)


class PreviewSession:
    """Current source image and settings of an interactive editor."""

    DEFAULT_MAX_PREVIEW_SIZE = 800

    def __init__(
            self,
            settings: Optional[WatermarkSettings] = None,
            compositor: Optional[WatermarkCompositor] = None,
            store: Optional[TemplateStore] = None,
            max_preview_size: int = DEFAULT_MAX_PREVIEW_SIZE
    ):
        self._settings = settings or WatermarkSettings()
        self.compositor = compositor or WatermarkCompositor()
        self.store = store
        self.max_preview_size = max_preview_size

        self._proxy: Optional[Image.Image] = None
        self._scale_factor = 1.0

    @property
    def settings(self) -> WatermarkSettings:
        return self._settings

    def set_image(self, source: Union[str, Path, Image.Image]) -> PreviewResult:
        """
        Switch the previewed image.

        Raises:
            UnreadableSourceImage: If `source` is a path that cannot be decoded.
        """
        image = source if isinstance(source, Image.Image) else load_image(source)

        width, height = image.size
        longest = max(width, height)
        if longest > self.max_preview_size:
            self._scale_factor = self.max_preview_size / longest
            proxy = image.resize(
                (max(1, int(width * self._scale_factor)), max(1, int(height * self._scale_factor))),
                Image.Resampling.BILINEAR
            )
        else:
            self._scale_factor = 1.0
            proxy = image.copy()

        self._proxy = proxy
        return self.render()

    def _proxy_settings(self) -> WatermarkSettings:
        if self._scale_factor == 1.0:
            return self._settings
        return self._settings.replace(
            font_size=max(1, round(self._settings.font_size * self._scale_factor)),
            scale=self._settings.scale * self._scale_factor
        )

    def render(self) -> Optional[PreviewResult]:
        """Recomposite the current image; None if no image is set."""
        if self._proxy is None:
            return None
        settings = self._proxy_settings()
        image = self.compositor.composite(self._proxy, settings)
        return PreviewResult(image=image, problems=self.compositor.diagnose(self._settings))

    def apply(self, **changes) -> Optional[PreviewResult]:
        """
        Replace settings fields and recomposite.

        Raises:
            InvalidConfiguration: If a changed value is rejected; the current
                settings are kept.
        """
        self._settings = self._settings.replace(**changes)
        return self.render()

    def use_settings(self, settings: WatermarkSettings) -> Optional[PreviewResult]:
        self._settings = settings
        return self.render()

    # ===== Store integration =====

    def save_template(self, name: str):
        self._require_store().save(name, self._settings)

    def load_template(self, name: str) -> bool:
        """Switch to a stored template. Returns False if it does not exist."""
        settings = self._require_store().load(name)
        if settings is None:
            return False
        self.use_settings(settings)
        return True

    def remember(self):
        """Persist the current settings as "last used"."""
        self._require_store().save_last_used(self._settings)

    def restore_last_used(self) -> bool:
        settings = self._require_store().load_last_used()
        if settings is None:
            return False
        self.use_settings(settings)
        return True

    def _require_store(self) -> TemplateStore:
        if self.store is None:
            raise RuntimeError("PreviewSession has no TemplateStore")
        return self.store
