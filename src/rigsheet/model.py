import logging
from dataclasses import dataclass, field, replace
from typing import Any

from .compressor import DrawCommand, compress_parts
from .palette import extract_palette, palette_from_hex, palette_to_hex
from .raster import RasterImage
from .segmenter import PIVOT_NAMES, PartId, Pivot, SegmentationBands, pivots_for, segment

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CharacterModel:
    """Read-only part/pivot model shared by every frame render."""

    name: str
    width: int
    height: int
    palette: tuple
    parts: dict = field(repr=False)
    pivots: dict

    def commands(self, part: PartId) -> list[DrawCommand]:
        return self.parts.get(part, [])

    def command_count(self) -> int:
        return sum(len(c) for c in self.parts.values())

    def to_table(self) -> dict[str, Any]:
        """Hand-authorable form, loadable again with model_from_table()."""
        return {
            "name": self.name,
            "size": [self.width, self.height],
            "palette": palette_to_hex(self.palette),
            "pivots": {k: [round(p.x, 3), round(p.y, 3)] for k, p in self.pivots.items()},
            "parts": {p.key: [c.as_list() for c in self.commands(p)] for p in PartId},
        }


# Oldest entries are evicted first once the cache is full.
MODEL_CACHE_SIZE = 32

_MODEL_CACHE: dict[tuple, CharacterModel] = {}


def clear_model_cache() -> None:
    _MODEL_CACHE.clear()


def model_from_raster(raster: RasterImage, bands: SegmentationBands | None = None, name: str = "character") -> CharacterModel:
    """Segment and compress a raster once.

    Repeat calls with the same pixels, background and bands reuse the cached
    segmentation. The same object comes back when the name matches too; a
    different name gets a renamed copy sharing the cached parts.
    """
    bands = bands or SegmentationBands()
    key = (raster.digest, raster.background, bands)
    cached = _MODEL_CACHE.get(key)
    if cached is not None:
        log.debug("model cache hit for %s", raster.identity)
        return cached if cached.name == name else replace(cached, name=name)

    palette, color_index = extract_palette(raster)
    grid = segment(raster, bands)
    parts = compress_parts(grid, raster, color_index)
    model = CharacterModel(
        name=name,
        width=raster.width,
        height=raster.height,
        palette=tuple(palette),
        parts=parts,
        pivots=pivots_for(raster, bands),
    )
    log.debug("built model '%s': %d colors, %d commands", name, len(palette), model.command_count())
    while len(_MODEL_CACHE) >= MODEL_CACHE_SIZE:
        _MODEL_CACHE.pop(next(iter(_MODEL_CACHE)))
    _MODEL_CACHE[key] = model
    return model


def _parse_command(raw, part_key: str, n_colors: int) -> DrawCommand:
    if not isinstance(raw, (list, tuple)) or len(raw) != 5 or not all(isinstance(v, int) and not isinstance(v, bool) for v in raw):
        raise ValueError(f"Part '{part_key}' command {raw!r} must be [colorIndex, x, y, w, h] integers")
    cmd = DrawCommand(*raw)
    if not 0 <= cmd.color < n_colors:
        raise ValueError(f"Part '{part_key}' command {raw!r} uses color index {cmd.color} outside palette of {n_colors}")
    if cmd.w <= 0 or cmd.h <= 0 or cmd.x < 0 or cmd.y < 0:
        raise ValueError(f"Part '{part_key}' command {raw!r} must have non-negative origin and positive size")
    return cmd


def _parse_pivot(raw, name: str) -> Pivot:
    if isinstance(raw, dict):
        raw = [raw.get("x"), raw.get("y")]
    if not isinstance(raw, (list, tuple)) or len(raw) != 2 or not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in raw):
        raise ValueError(f"Pivot '{name}' must be [x, y] numbers, got {raw!r}")
    return Pivot(float(raw[0]), float(raw[1]))


def model_from_table(table: dict[str, Any], name: str | None = None) -> CharacterModel:
    """Build a model from hand-authored palette, pivots and per-part commands."""
    palette = palette_from_hex(table.get("palette"))

    raw_pivots = table.get("pivots") or {}
    if not isinstance(raw_pivots, dict):
        raise ValueError("'pivots' must be a mapping of joint name to [x, y]")
    missing = [n for n in PIVOT_NAMES if n not in raw_pivots]
    if missing:
        raise ValueError(f"Missing pivots: {missing}")
    pivots = {n: _parse_pivot(raw_pivots[n], n) for n in PIVOT_NAMES}

    raw_parts = table.get("parts") or {}
    if not isinstance(raw_parts, dict):
        raise ValueError("'parts' must be a mapping of part name to command lists")
    parts = {p: [] for p in PartId}
    for key, cmds in raw_parts.items():
        part = PartId.from_key(key)
        if not isinstance(cmds, list):
            raise ValueError(f"Part '{key}' must be a list of commands")
        parts[part] = [_parse_command(c, key, len(palette)) for c in cmds]

    if "size" in table:
        size = table["size"]
        if (
            not isinstance(size, (list, tuple))
            or len(size) != 2
            or not all(isinstance(v, int) and not isinstance(v, bool) and v > 0 for v in size)
        ):
            raise ValueError(f"'size' must be [width, height] positive integers, got {size!r}")
    else:
        size = [
            max((c.x + c.w for cmds in parts.values() for c in cmds), default=0),
            max((c.y + c.h for cmds in parts.values() for c in cmds), default=0),
        ]
    return CharacterModel(
        name=name or table.get("name") or "character",
        width=size[0],
        height=size[1],
        palette=tuple(palette),
        parts=parts,
        pivots=pivots,
    )
