"""
Target format presets.

The registry is built once at process start (from the built-in table or a JSON
file) and then passed to whatever needs it. It is never mutated afterwards.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping

from smart_resizer.models.jobs import FormatPreset, SafeZone

logger = logging.getLogger(__name__)


class UnknownFormatError(KeyError):
    """Raised when a format identifier is not present in the registry."""

    def __init__(self, format_ids: Iterable[str]) -> None:
        self.format_ids = list(format_ids)
        super().__init__(f"Unknown format identifiers: {', '.join(self.format_ids)}")

    def __str__(self) -> str:
        # KeyError quotes its argument by default; keep the message readable.
        return self.args[0]


def _standard(format_id: str, width: int, height: int, ratio: str, description: str, usage: str) -> FormatPreset:
    return FormatPreset(
        id=format_id,
        platform="standard",
        width=width,
        height=height,
        safe_zone=SafeZone.uniform(0.0),
        ratio=ratio,
        description=description,
        usage=usage,
    )


DEFAULT_PRESETS: tuple[FormatPreset, ...] = (
    # Square
    _standard("square", 1080, 1080, "1:1", "1:1 Square", "Instagram, Facebook posts"),
    # Portrait
    _standard("portrait_2_3", 1080, 1620, "2:3", "2:3 Portrait", "Classic portrait photography"),
    _standard("portrait_3_4", 1080, 1440, "3:4", "3:4 Traditional", "Traditional portrait format"),
    _standard("social_story", 1080, 1920, "9:16", "9:16 Social Story", "Instagram Stories, TikTok, Reels"),
    _standard("social_post", 1080, 1350, "4:5", "4:5 Social Post", "Instagram/Facebook optimal"),
    # Landscape
    _standard("standard_3_2", 1620, 1080, "3:2", "3:2 Standard", "Standard photography (35mm)"),
    _standard("classic_4_3", 1440, 1080, "4:3", "4:3 Classic", "Classic TV/monitor format"),
    _standard("widescreen", 1920, 1080, "16:9", "16:9 Widescreen", "YouTube, modern displays"),
    _standard("medium_5_4", 1350, 1080, "5:4", "5:4 Medium", "Large format photography"),
    _standard("ultrawide", 2520, 1080, "21:9", "21:9 Widescreen", "Cinematic ultra-wide"),
)

DEFAULT_PACKS: Dict[str, List[str]] = {
    "social": ["square", "social_post", "social_story"],
    "portrait": ["portrait_2_3", "portrait_3_4", "social_story"],
    "landscape": ["standard_3_2", "classic_4_3", "widescreen"],
}


class FormatPresetRegistry:
    """
    Read-only lookup of format presets keyed by identifier.

    Iteration order follows the order presets were supplied in.
    """

    def __init__(
        self,
        presets: Iterable[FormatPreset],
        packs: Mapping[str, List[str]] | None = None,
    ) -> None:
        table: Dict[str, FormatPreset] = {}
        for preset in presets:
            if preset.width <= 0 or preset.height <= 0:
                raise ValueError(f"Preset {preset.id!r} must have positive dimensions")
            zone = preset.safe_zone
            for side, value in (("top", zone.top), ("bottom", zone.bottom), ("left", zone.left), ("right", zone.right)):
                if not 0.0 <= value < 0.5:
                    raise ValueError(f"Preset {preset.id!r} safe zone {side}={value} must be in [0, 0.5)")
            if preset.id in table:
                raise ValueError(f"Duplicate preset identifier {preset.id!r}")
            table[preset.id] = preset
        self._presets = MappingProxyType(table)

        resolved_packs: Dict[str, tuple[str, ...]] = {}
        for name, ids in (packs or {}).items():
            missing = [format_id for format_id in ids if format_id not in table]
            if missing:
                raise UnknownFormatError(missing)
            resolved_packs[name] = tuple(ids)
        resolved_packs["all"] = tuple(table)
        self._packs = MappingProxyType(resolved_packs)

    @classmethod
    def default(cls) -> FormatPresetRegistry:
        return cls(DEFAULT_PRESETS, DEFAULT_PACKS)

    @classmethod
    def from_json_file(cls, path: Path) -> FormatPresetRegistry:
        """
        Load presets from a JSON document.

        Expected shape::

            {
              "formats": {
                "meta_feed": {"platform": "meta", "width": 1080, "height": 1350,
                              "safe_zone": {"top": 0.14, "bottom": 0.14}}
              },
              "packs": {"meta": ["meta_feed"]}
            }

        A `safe_zone` may also carry a single `all` value applied to every side.
        """
        document = json.loads(Path(path).read_text(encoding="utf-8"))
        presets: List[FormatPreset] = []
        for format_id, entry in document.get("formats", {}).items():
            zone_entry = entry.get("safe_zone") or {}
            if "all" in zone_entry:
                safe_zone = SafeZone.uniform(float(zone_entry["all"]))
            else:
                safe_zone = SafeZone(
                    top=float(zone_entry.get("top", 0.0)),
                    bottom=float(zone_entry.get("bottom", 0.0)),
                    left=float(zone_entry.get("left", 0.0)),
                    right=float(zone_entry.get("right", 0.0)),
                )
            presets.append(
                FormatPreset(
                    id=format_id,
                    platform=entry.get("platform", "standard"),
                    width=int(entry["width"]),
                    height=int(entry["height"]),
                    safe_zone=safe_zone,
                    ratio=entry.get("ratio", ""),
                    description=entry.get("description", ""),
                    usage=entry.get("usage", ""),
                )
            )
        registry = cls(presets, document.get("packs"))
        logger.info("Loaded %d format presets from %s", len(registry), path)
        return registry

    def __len__(self) -> int:
        return len(self._presets)

    def __contains__(self, format_id: object) -> bool:
        return format_id in self._presets

    def get(self, format_id: str) -> FormatPreset:
        try:
            return self._presets[format_id]
        except KeyError:
            raise UnknownFormatError([format_id]) from None

    def ids(self) -> List[str]:
        return list(self._presets)

    def presets(self) -> List[FormatPreset]:
        return list(self._presets.values())

    def by_platform(self, platform: str) -> List[FormatPreset]:
        return [preset for preset in self._presets.values() if preset.platform == platform]

    @property
    def packs(self) -> Mapping[str, tuple[str, ...]]:
        return self._packs

    def resolve(self, format_ids: Iterable[str]) -> List[str]:
        """
        Deduplicate requested identifiers and check they all exist.

        The first occurrence of each identifier wins, so the result preserves
        request order. Raises UnknownFormatError listing every unknown id.
        """
        seen: Dict[str, None] = {}
        for format_id in format_ids:
            seen.setdefault(format_id, None)
        unknown = [format_id for format_id in seen if format_id not in self._presets]
        if unknown:
            raise UnknownFormatError(unknown)
        return list(seen)


def safe_zone_pixels(preset: FormatPreset) -> Dict[str, int]:
    """Convert a preset's fractional safe zone into pixel margins."""
    zone = preset.safe_zone
    return {
        "top": round(preset.height * zone.top),
        "bottom": round(preset.height * zone.bottom),
        "left": round(preset.width * zone.left),
        "right": round(preset.width * zone.right),
    }
