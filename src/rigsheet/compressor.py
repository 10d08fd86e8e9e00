"""Lossless rectangle compression of per-part pixel sets.

Two greedy passes: horizontal runs of one part and one exact color, then
vertical merging of runs that share (color, x, width) and touch end to end.
The result is not a minimal cover, but every pixel of a part is covered by
exactly one command and no pixel outside the part is touched.
"""
import logging
from typing import NamedTuple

import numpy as np

from .raster import RasterImage, pack_rgb, unpack_rgb
from .segmenter import NO_PART, PartId

log = logging.getLogger(__name__)


class DrawCommand(NamedTuple):
    color: int
    x: int
    y: int
    w: int
    h: int

    def as_list(self) -> list[int]:
        return [self.color, self.x, self.y, self.w, self.h]


def part_runs(part_grid: np.ndarray, raster: RasterImage, color_index: dict) -> dict[int, list[DrawCommand]]:
    """Horizontal runs of every part in one pass, keyed by part value, each list in row-major order."""
    runs = {int(p): [] for p in PartId}
    height, width = part_grid.shape
    if not height or not width:
        return runs
    packed = pack_rgb(raster.pixels)
    # a run continues while part and exact color match the left neighbour; rows always break
    same = np.zeros((height, width), dtype=bool)
    same[:, 1:] = (part_grid[:, 1:] == part_grid[:, :-1]) & (packed[:, 1:] == packed[:, :-1])
    starts = ~same.ravel()
    lengths = np.bincount(np.cumsum(starts) - 1)
    idx = np.flatnonzero(starts)
    for i, part, color, n in zip(idx, part_grid.ravel()[idx], packed.ravel()[idx], lengths):
        if part == NO_PART:
            continue
        y, x = divmod(int(i), width)
        runs[int(part)].append(DrawCommand(color_index[unpack_rgb(color)], x, y, int(n), 1))
    return runs


def horizontal_runs(part_grid: np.ndarray, raster: RasterImage, color_index: dict, part: int) -> list[DrawCommand]:
    return part_runs(part_grid, raster, color_index)[int(part)]


def merge_vertical(runs: list[DrawCommand]) -> list[DrawCommand]:
    groups: dict[tuple[int, int, int], list[DrawCommand]] = {}
    for r in runs:
        groups.setdefault((r.color, r.x, r.w), []).append(r)

    merged = []
    for group in groups.values():
        group.sort(key=lambda r: r.y)
        cur = group[0]
        for nxt in group[1:]:
            if nxt.y == cur.y + cur.h:
                cur = cur._replace(h=cur.h + nxt.h)
            else:
                merged.append(cur)
                cur = nxt
        merged.append(cur)
    merged.sort(key=lambda c: (c.y, c.x))
    return merged


def compress_parts(part_grid: np.ndarray, raster: RasterImage, color_index: dict) -> dict[PartId, list[DrawCommand]]:
    runs = part_runs(part_grid, raster, color_index)
    parts = {part: merge_vertical(runs[int(part)]) for part in PartId}
    log.debug("compress: %s", {p.key: len(c) for p, c in parts.items()})
    return parts


def replay(commands, palette, width: int, height: int, out: np.ndarray | None = None) -> np.ndarray:
    """Draw commands unrotated onto an RGBA buffer (transparent when `out` is None)."""
    if out is None:
        out = np.zeros((height, width, 4), dtype=np.uint8)
    for c in commands:
        r, g, b = palette[c.color]
        out[c.y:c.y + c.h, c.x:c.x + c.w] = (r, g, b, 255)
    return out


def coverage(parts: dict) -> np.ndarray:
    """Per-pixel count of commands covering it, across all parts."""
    width = max((c.x + c.w for cmds in parts.values() for c in cmds), default=0)
    height = max((c.y + c.h for cmds in parts.values() for c in cmds), default=0)
    counts = np.zeros((height, width), dtype=np.int32)
    for cmds in parts.values():
        for c in cmds:
            counts[c.y:c.y + c.h, c.x:c.x + c.w] += 1
    return counts


def find_overlaps(parts: dict) -> list[tuple[int, int]]:
    ys, xs = np.nonzero(coverage(parts) > 1)
    return [(int(x), int(y)) for y, x in zip(ys, xs)]


def check_round_trip(part_grid: np.ndarray, raster: RasterImage, palette, parts: dict) -> list[str]:
    """Return a list of problems; empty when every part replays to its exact pixels."""
    problems = []
    height, width = part_grid.shape
    for part, cmds in parts.items():
        drawn = replay(cmds, palette, width, height)
        expected = np.zeros_like(drawn)
        sel = part_grid == int(part)
        expected[sel, :3] = raster.pixels[sel, :3]
        expected[sel, 3] = 255
        if not np.array_equal(drawn, expected):
            bad = int(np.any(drawn != expected, axis=2).sum())
            problems.append(f"{PartId(part).key}: {bad} pixels differ after replay")
    overlaps = find_overlaps(parts)
    if overlaps:
        problems.append(f"{len(overlaps)} pixels covered by more than one command")
    return problems
