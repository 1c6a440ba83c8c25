"""
Template Store
==============
Persists named watermark templates and the last used settings as JSON.

Technical Notes:
- The whole template mapping is one file, rewritten atomically (temp file
  + os.replace) after every mutation
- "Last used" settings live in a separate single-slot file
- Mutations are serialized with a mutex because each write replaces the
  whole file
- A missing store is a normal cold start. A corrupt store is reset to
  empty with a warning and `reset_occurred` set; it never raises
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from PyQt6.QtCore import QMutex, QMutexLocker, QStandardPaths

from .errors import InvalidConfiguration, StoreCorrupt
from .settings import SCHEMA_VERSION, WatermarkSettings

logger = logging.getLogger(__name__)

APP_DIR_NAME = "photowatermark"
TEMPLATES_FILE = "templates.json"
LAST_SETTINGS_FILE = "last_settings.json"


def default_store_dir() -> Path:
    """Per-user configuration directory for the store."""
    base = QStandardPaths.writableLocation(
        QStandardPaths.StandardLocation.GenericConfigLocation
    )
    if not base:
        base = str(Path.home() / ".config")
    return Path(base) / APP_DIR_NAME


def _read_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StoreCorrupt(f"Cannot read {path.name}: {e}") from e


def _write_json(path: Path, payload: Any):
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except Exception:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


class TemplateStore:
    """
    Named WatermarkSettings plus one "last used" slot.

    The in-memory mapping is loaded once on construction and is the source
    of truth for the session.
    """

    def __init__(self, store_dir: Optional[Union[str, Path]] = None):
        """
        Args:
            store_dir: Directory holding the store files. Defaults to the
                per-user configuration location.
        """
        self.store_dir = Path(store_dir) if store_dir else default_store_dir()
        self.templates_path = self.store_dir / TEMPLATES_FILE
        self.last_settings_path = self.store_dir / LAST_SETTINGS_FILE

        self._templates: Dict[str, WatermarkSettings] = {}
        self._lock = QMutex()

        # Set when a corrupt store had to be discarded
        self.reset_occurred = False

        self._load_templates()

    # ===== Loading =====

    def _mark_reset(self, reason: str):
        logger.warning("Template store reset: %s", reason)
        self.reset_occurred = True

    def _load_templates(self):
        if not self.templates_path.exists():
            return

        try:
            payload = _read_json(self.templates_path)
            if not isinstance(payload, dict) or not isinstance(payload.get("templates"), dict):
                raise StoreCorrupt(f"{self.templates_path.name} has no template mapping")
        except StoreCorrupt as e:
            self._mark_reset(str(e))
            self._templates = {}
            return

        for name, data in payload["templates"].items():
            try:
                self._templates[self._normalize(str(name))] = WatermarkSettings.from_dict(data)
            except InvalidConfiguration as e:
                self._mark_reset(f"dropped template {name!r}: {e}")

    def _flush(self):
        payload = {
            "schema": SCHEMA_VERSION,
            "templates": {
                name: settings.to_dict() for name, settings in self._templates.items()
            },
        }
        _write_json(self.templates_path, payload)

    def _commit(self, templates: Dict[str, WatermarkSettings]):
        """Swap in a new mapping and write it; roll back if the write fails."""
        previous = self._templates
        self._templates = templates
        try:
            self._flush()
        except OSError:
            self._templates = previous
            raise

    @staticmethod
    def _normalize(name: str) -> str:
        # Names are stored stripped; every lookup strips the same way
        return name.strip() if isinstance(name, str) else name

    def _check_name(self, name: str) -> str:
        if not isinstance(name, str) or not name.strip():
            raise InvalidConfiguration("Template name cannot be empty")
        return self._normalize(name)

    # ===== Templates =====

    def save(self, name: str, settings: WatermarkSettings):
        """Save or overwrite a template and write the store."""
        name = self._check_name(name)
        with QMutexLocker(self._lock):
            templates = dict(self._templates)
            templates[name] = settings
            self._commit(templates)

    def load(self, name: str) -> Optional[WatermarkSettings]:
        name = self._normalize(name)
        with QMutexLocker(self._lock):
            return self._templates.get(name)

    def delete(self, name: str) -> bool:
        """Delete a template. Returns False if it did not exist."""
        name = self._normalize(name)
        with QMutexLocker(self._lock):
            if name not in self._templates:
                return False
            templates = dict(self._templates)
            del templates[name]
            self._commit(templates)
            return True

    def rename(self, old_name: str, new_name: str) -> bool:
        """Rename a template. Returns False if `old_name` is missing or `new_name` is taken."""
        old_name = self._normalize(old_name)
        new_name = self._check_name(new_name)
        with QMutexLocker(self._lock):
            if old_name not in self._templates:
                return False
            if new_name == old_name:
                return True
            if new_name in self._templates:
                return False
            templates = dict(self._templates)
            templates[new_name] = templates.pop(old_name)
            self._commit(templates)
            return True

    def list_names(self) -> List[str]:
        with QMutexLocker(self._lock):
            return sorted(self._templates)

    def __contains__(self, name: str) -> bool:
        name = self._normalize(name)
        with QMutexLocker(self._lock):
            return name in self._templates

    def __len__(self) -> int:
        with QMutexLocker(self._lock):
            return len(self._templates)

    # ===== Last used =====

    def save_last_used(self, settings: WatermarkSettings):
        with QMutexLocker(self._lock):
            _write_json(self.last_settings_path, settings.to_dict())

    def load_last_used(self) -> Optional[WatermarkSettings]:
        """Return the last used settings, or None if absent or unreadable."""
        with QMutexLocker(self._lock):
            if not self.last_settings_path.exists():
                return None
            try:
                return WatermarkSettings.from_dict(_read_json(self.last_settings_path))
            except (StoreCorrupt, InvalidConfiguration) as e:
                self._mark_reset(f"last used settings discarded: {e}")
                return None
