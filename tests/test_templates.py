"""
Tests for template and last-used settings persistence.

Run with: python -m pytest tests/test_templates.py -v
"""

import json
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from photowatermark.core.errors import InvalidConfiguration
from photowatermark.core.export import export_file_name
from photowatermark.core.session import PreviewSession
from photowatermark.core.settings import (
    NamingRule,
    OutputFormat,
    ResizeMode,
    WatermarkMode,
    WatermarkSettings,
)
from photowatermark.core.templates import TemplateStore


BOUNDARY_SETTINGS = [
    WatermarkSettings(),
    WatermarkSettings(text="", text_opacity=0.0, rotation=0),
    WatermarkSettings(text="© 2024 夜猫", text_opacity=1.0, rotation=359, bold=True, italic=True,
                      shadow_enabled=True, shadow_color=(12, 34, 56), color=(255, 255, 0),
                      font_family="DejaVu Sans", font_size=1),
    WatermarkSettings(mode=WatermarkMode.IMAGE, watermark_image_path="/photos/logo.png",
                      scale=0.25, image_opacity=0.0, position_x=0, position_y=100),
    WatermarkSettings(mode=WatermarkMode.IMAGE, watermark_image_path=None, image_opacity=1.0,
                      scale=3.5, position_x=100, position_y=0),
    WatermarkSettings(output_format=OutputFormat.PNG, jpeg_quality=0.0,
                      naming_rule=NamingRule.PREFIX, custom_text=""),
    WatermarkSettings(jpeg_quality=1.0, naming_rule=NamingRule.SUFFIX, custom_text="_final",
                      resize_mode=ResizeMode.PERCENT, resize_value=50),
]


def test_cold_start_is_empty(tmp_path):
    store = TemplateStore(tmp_path / "store")
    assert store.list_names() == []
    assert store.load_last_used() is None
    assert not store.reset_occurred
    assert store.load("anything") is None


@pytest.mark.parametrize("settings", BOUNDARY_SETTINGS)
def test_template_roundtrip_across_restarts(tmp_path, settings):
    TemplateStore(tmp_path).save("boundary", settings)

    reopened = TemplateStore(tmp_path)
    assert reopened.list_names() == ["boundary"]
    assert reopened.load("boundary") == settings


@pytest.mark.parametrize("settings", BOUNDARY_SETTINGS)
def test_last_used_roundtrip(tmp_path, settings):
    TemplateStore(tmp_path).save_last_used(settings)
    assert TemplateStore(tmp_path).load_last_used() == settings


def test_last_used_is_separate_from_templates(tmp_path):
    store = TemplateStore(tmp_path)
    store.save_last_used(WatermarkSettings(text="last"))
    assert store.list_names() == []
    store.save("named", WatermarkSettings(text="named"))
    assert store.load_last_used().text == "last"


def test_save_overwrites_and_delete(tmp_path):
    store = TemplateStore(tmp_path)
    store.save("b", WatermarkSettings(text="first"))
    store.save("a", WatermarkSettings(text="other"))
    store.save("b", WatermarkSettings(text="second"))

    assert store.list_names() == ["a", "b"]
    assert store.load("b").text == "second"
    assert "a" in store
    assert len(store) == 2

    assert store.delete("a")
    assert not store.delete("a")
    assert TemplateStore(tmp_path).list_names() == ["b"]


def test_rename(tmp_path):
    store = TemplateStore(tmp_path)
    store.save("old", WatermarkSettings(text="x"))
    store.save("taken", WatermarkSettings(text="y"))

    assert not store.rename("missing", "new")
    assert not store.rename("old", "taken")
    assert store.rename("old", "new")
    assert TemplateStore(tmp_path).list_names() == ["new", "taken"]
    assert TemplateStore(tmp_path).load("new").text == "x"


def test_blank_template_name_is_rejected(tmp_path):
    store = TemplateStore(tmp_path)
    with pytest.raises(InvalidConfiguration):
        store.save("   ", WatermarkSettings())


def test_padded_template_name_matches_on_every_lookup(tmp_path):
    store = TemplateStore(tmp_path)
    settings = WatermarkSettings(text="Signed")
    store.save(" Signature ", settings)

    assert store.list_names() == ["Signature"]
    assert store.load(" Signature ") == settings
    assert store.load("Signature") == settings
    assert " Signature " in store
    assert TemplateStore(tmp_path).load(" Signature ") == settings

    assert store.rename(" Signature ", "Final ")
    assert store.list_names() == ["Final"]
    assert store.delete(" Final")
    assert store.list_names() == []


def test_store_is_written_as_single_versioned_document(tmp_path):
    store = TemplateStore(tmp_path)
    store.save("one", WatermarkSettings())
    store.save("two", WatermarkSettings())

    files = sorted(p.name for p in tmp_path.iterdir())
    assert files == ["templates.json"]

    payload = json.loads((tmp_path / "templates.json").read_text(encoding="utf-8"))
    assert payload["schema"] == 1
    assert set(payload["templates"]) == {"one", "two"}


@pytest.mark.parametrize("content", [
    b"\x00\x01binary garbage",
    b"{not json",
    b"[1, 2, 3]",
    b'{"schema": 1, "templates": "nope"}',
])
def test_corrupt_store_resets_to_empty(tmp_path, content):
    (tmp_path / "templates.json").write_bytes(content)

    store = TemplateStore(tmp_path)
    assert store.list_names() == []
    assert store.reset_occurred

    store.save("fresh", WatermarkSettings())
    assert TemplateStore(tmp_path).list_names() == ["fresh"]


def test_invalid_entry_is_dropped_and_others_kept(tmp_path):
    payload = {
        "schema": 1,
        "templates": {
            "good": WatermarkSettings(text="ok").to_dict(),
            "bad": {"scale": -1},
        },
    }
    (tmp_path / "templates.json").write_text(json.dumps(payload), encoding="utf-8")

    store = TemplateStore(tmp_path)
    assert store.list_names() == ["good"]
    assert store.reset_occurred


def test_non_finite_values_in_store_are_dropped(tmp_path):
    good = WatermarkSettings(text="ok").to_dict()
    infinite = dict(good, scale=float("inf"))
    not_a_number = dict(good, text_opacity=float("nan"))
    payload = {"schema": 1, "templates": {"good": good, "inf": infinite, "nan": not_a_number}}
    # json.dumps writes Infinity/NaN literals, which json.load accepts back
    (tmp_path / "templates.json").write_text(json.dumps(payload), encoding="utf-8")

    store = TemplateStore(tmp_path)
    assert store.list_names() == ["good"]
    assert store.reset_occurred


def test_corrupt_last_used_is_absent(tmp_path):
    (tmp_path / "last_settings.json").write_text("{{{", encoding="utf-8")
    store = TemplateStore(tmp_path)
    assert store.load_last_used() is None
    assert store.reset_occurred


def test_old_documents_fill_missing_fields(tmp_path):
    payload = {"templates": {"legacy": {"text": "Old", "position_x": 10}}}
    (tmp_path / "templates.json").write_text(json.dumps(payload), encoding="utf-8")

    settings = TemplateStore(tmp_path).load("legacy")
    assert settings.text == "Old"
    assert settings.position_x == 10
    assert settings.position_y == WatermarkSettings().position_y
    assert settings.output_format is OutputFormat.JPEG


def test_unknown_naming_rule_survives_and_uses_fallback(tmp_path):
    data = WatermarkSettings(custom_text="v2").to_dict()
    data["naming_rule"] = "date_stamp"
    payload = {"schema": 2, "templates": {"newer": data}}
    (tmp_path / "templates.json").write_text(json.dumps(payload), encoding="utf-8")

    settings = TemplateStore(tmp_path).load("newer")
    assert settings.naming_rule == "date_stamp"
    assert export_file_name("img.png", settings) == "img_v2.jpg"


def test_concurrent_saves_are_serialized(tmp_path):
    store = TemplateStore(tmp_path)

    def save(index):
        store.save(f"t{index:03d}", WatermarkSettings(text=str(index)))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(save, range(80)))

    reopened = TemplateStore(tmp_path)
    assert len(reopened) == 80
    assert reopened.load("t042").text == "42"
    assert not [p for p in tmp_path.iterdir() if p.suffix == ".tmp"]


def test_preview_session_store_integration(tmp_path):
    store = TemplateStore(tmp_path)
    session = PreviewSession(WatermarkSettings(text="Mine"), store=store)

    session.save_template("mine")
    session.remember()
    session.apply(text="Changed")

    assert session.load_template("mine")
    assert session.settings.text == "Mine"
    assert not session.load_template("missing")

    session.apply(text="Later")
    assert session.restore_last_used()
    assert session.settings.text == "Mine"


def test_preview_session_without_store():
    with pytest.raises(RuntimeError):
        PreviewSession().remember()
