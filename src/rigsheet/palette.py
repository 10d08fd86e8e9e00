import logging
from typing import Any

import numpy as np

from .raster import RasterImage, format_hex_rgb, pack_rgb, parse_hex_rgb, unpack_rgb

log = logging.getLogger(__name__)


def count_colors(raster: RasterImage) -> dict[tuple[int, int, int], int]:
    """Count opaque pixels per exact RGB triple, in first-seen (row-major) order."""
    # boolean indexing walks the mask in row-major order
    packed = pack_rgb(raster.pixels[raster.opaque_mask])
    if not packed.size:
        return {}
    values, first, counts = np.unique(packed, return_index=True, return_counts=True)
    order = np.argsort(first)
    return {unpack_rgb(v): int(n) for v, n in zip(values[order], counts[order])}


def extract_palette(raster: RasterImage) -> tuple[list[tuple[int, int, int]], dict[tuple[int, int, int], int]]:
    """Return (palette, color_index).

    The palette is ordered by descending pixel count; ties keep first-seen
    order. color_index maps each RGB triple to its rank.
    """
    counts = count_colors(raster)
    # dicts keep insertion order, so enumerate() gives the first-seen rank
    ranked = sorted(enumerate(counts.items()), key=lambda e: (-e[1][1], e[0]))
    palette = [rgb for _, (rgb, _) in ranked]
    color_index = {rgb: i for i, rgb in enumerate(palette)}
    log.debug("palette: %d colors from %d opaque pixels", len(palette), sum(counts.values()))
    return palette, color_index


def palette_from_hex(entries: Any) -> list[tuple[int, int, int]]:
    if not isinstance(entries, list):
        raise ValueError("Palette must be a list of hex colors")
    palette = [parse_hex_rgb(e) for e in entries]
    if len(set(palette)) != len(palette):
        raise ValueError("Palette colors must be unique")
    return palette


def palette_to_hex(palette) -> list[str]:
    return [format_hex_rgb(rgb) for rgb in palette]
