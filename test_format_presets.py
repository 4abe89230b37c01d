"""Tests for the format preset registry."""

import json

import pytest

from smart_resizer.models.jobs import FormatPreset, SafeZone
from smart_resizer.services.format_presets import (
    DEFAULT_PRESETS,
    FormatPresetRegistry,
    UnknownFormatError,
    safe_zone_pixels,
)


def test_default_registry_contents():
    registry = FormatPresetRegistry.default()

    assert len(registry) == 10
    assert registry.ids()[0] == "square"
    assert registry.get("social_story").width == 1080
    assert registry.get("social_story").height == 1920
    assert "ultrawide" in registry
    assert "billboard" not in registry


def test_packs_reference_known_presets():
    registry = FormatPresetRegistry.default()

    assert set(registry.packs) == {"social", "portrait", "landscape", "all"}
    assert registry.packs["all"] == tuple(registry.ids())
    for ids in registry.packs.values():
        assert all(format_id in registry for format_id in ids)


def test_get_unknown_format_raises():
    registry = FormatPresetRegistry.default()
    with pytest.raises(UnknownFormatError) as exc_info:
        registry.get("billboard")
    assert exc_info.value.format_ids == ["billboard"]
    assert "billboard" in str(exc_info.value)


def test_resolve_dedupes_preserving_first_occurrence():
    registry = FormatPresetRegistry.default()
    resolved = registry.resolve(["widescreen", "square", "widescreen", "square", "social_post"])
    assert resolved == ["widescreen", "square", "social_post"]


def test_resolve_lists_every_unknown_id():
    registry = FormatPresetRegistry.default()
    with pytest.raises(UnknownFormatError) as exc_info:
        registry.resolve(["square", "nope", "also_nope", "nope"])
    assert exc_info.value.format_ids == ["nope", "also_nope"]


def test_registry_rejects_bad_presets():
    good = FormatPreset(id="a", platform="x", width=10, height=10)
    with pytest.raises(ValueError):
        FormatPresetRegistry([good, good])
    with pytest.raises(ValueError):
        FormatPresetRegistry([FormatPreset(id="b", platform="x", width=0, height=10)])
    with pytest.raises(UnknownFormatError):
        FormatPresetRegistry([good], packs={"broken": ["a", "missing"]})


def test_by_platform_filters():
    presets = list(DEFAULT_PRESETS) + [FormatPreset(id="meta_feed", platform="meta", width=1080, height=1350)]
    registry = FormatPresetRegistry(presets)

    assert [p.id for p in registry.by_platform("meta")] == ["meta_feed"]
    assert len(registry.by_platform("standard")) == 10
    assert registry.by_platform("tiktok") == []


def test_safe_zone_pixels_rounds_margins():
    preset = FormatPreset(
        id="story",
        platform="meta",
        width=1080,
        height=1920,
        safe_zone=SafeZone(top=0.14, bottom=0.2, left=0.055, right=0.0),
    )
    assert safe_zone_pixels(preset) == {"top": 269, "bottom": 384, "left": 59, "right": 0}


def test_registry_from_json_file(tmp_path):
    document = {
        "formats": {
            "meta_story": {
                "platform": "meta",
                "width": 1080,
                "height": 1920,
                "ratio": "9:16",
                "safe_zone": {"top": 0.14, "bottom": 0.2},
            },
            "banner": {"width": 728, "height": 90, "safe_zone": {"all": 0.05}},
        },
        "packs": {"meta": ["meta_story"]},
    }
    path = tmp_path / "presets.json"
    path.write_text(json.dumps(document), encoding="utf-8")

    registry = FormatPresetRegistry.from_json_file(path)

    assert registry.ids() == ["meta_story", "banner"]
    assert registry.get("meta_story").safe_zone.top == pytest.approx(0.14)
    assert registry.get("banner").platform == "standard"
    assert registry.get("banner").safe_zone == SafeZone.uniform(0.05)
    assert registry.packs["meta"] == ("meta_story",)
    assert registry.packs["all"] == ("meta_story", "banner")


@pytest.mark.parametrize("zone", [SafeZone(top=0.5), SafeZone(left=-0.1), SafeZone.uniform(0.75)])
def test_registry_rejects_out_of_range_safe_zone(zone):
    with pytest.raises(ValueError, match="safe zone"):
        FormatPresetRegistry([FormatPreset(id="bad", platform="x", width=100, height=100, safe_zone=zone)])


def test_json_file_with_bad_safe_zone_fails_at_load(tmp_path):
    path = tmp_path / "presets.json"
    path.write_text(
        json.dumps({"formats": {"story": {"width": 1080, "height": 1920, "safe_zone": {"top": 0.6}}}}),
        encoding="utf-8",
    )
    with pytest.raises(ValueError, match="safe zone top=0.6"):
        FormatPresetRegistry.from_json_file(path)
