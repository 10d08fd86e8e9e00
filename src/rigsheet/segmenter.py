"""Heuristic body-part segmentation of a single upright humanoid silhouette.

Every opaque pixel is classified from its position relative to horizontal
bands measured on the opaque bounding box. The band fractions have no
principled derivation; they are tuned per character and carried in
`SegmentationBands`.
"""
import logging
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import NamedTuple

import numpy as np

from .raster import RasterImage

log = logging.getLogger(__name__)

NO_PART = -1


class PartId(IntEnum):
    HEAD = 0
    TORSO = 1
    LEFT_ARM = 2
    RIGHT_ARM = 3
    LEFT_THIGH = 4
    LEFT_SHIN = 5
    RIGHT_THIGH = 6
    RIGHT_SHIN = 7

    @property
    def key(self) -> str:
        return self.name.lower()

    @classmethod
    def from_key(cls, key: str) -> "PartId":
        try:
            return cls[str(key).upper()]
        except KeyError:
            raise ValueError(f"Unknown body part '{key}' (expected one of {[p.key for p in cls]})") from None


class Pivot(NamedTuple):
    x: float
    y: float


PIVOT_NAMES = ("leftShoulder", "rightShoulder", "leftHip", "rightHip", "leftKnee", "rightKnee")


@dataclass(frozen=True)
class SegmentationBands:
    head: float = 0.28
    shoulder: float = 0.34
    hip: float = 0.60
    knee: float = 0.79
    arm_margin: float = 0.22
    shoulder_left: float = 0.20
    shoulder_right: float = 0.16
    hip_offset: float = 0.10
    knee_offset: float = 0.10

    def __post_init__(self):
        for f in fields(self):
            v = getattr(self, f.name)
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ValueError(f"Segmentation band '{f.name}' must be a number, got {v!r}")
            if not 0.0 <= v <= 1.0:
                raise ValueError(f"Segmentation band '{f.name}' must be in [0, 1], got {v}")
        if not self.head <= self.hip <= self.knee:
            raise ValueError(f"Segmentation bands must satisfy head <= hip <= knee (got {self.head}, {self.hip}, {self.knee})")

    @classmethod
    def from_dict(cls, d: dict | None) -> "SegmentationBands":
        if not d:
            return cls()
        if not isinstance(d, dict):
            raise ValueError("'segmentation' must be a mapping of band fractions")
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"Unknown segmentation keys: {sorted(unknown)}")
        return cls(**d)


def _lines(bbox, bands: SegmentationBands) -> dict:
    bx, by, bw, bh = bbox
    return {
        "center": bx + bw / 2,
        "head": by + bh * bands.head,
        "shoulder": by + bh * bands.shoulder,
        "hip": by + bh * bands.hip,
        "knee": by + bh * bands.knee,
        "arm_margin": bw * bands.arm_margin,
    }


def classify(x: int, y: int, lines: dict) -> PartId:
    if y < lines["head"]:
        return PartId.HEAD
    cx = lines["center"]
    if y < lines["hip"]:
        if x < cx - lines["arm_margin"]:
            return PartId.LEFT_ARM
        if x > cx + lines["arm_margin"]:
            return PartId.RIGHT_ARM
        return PartId.TORSO
    left = x < cx
    thigh = y < lines["knee"]
    if left:
        return PartId.LEFT_THIGH if thigh else PartId.LEFT_SHIN
    return PartId.RIGHT_THIGH if thigh else PartId.RIGHT_SHIN


def segment(raster: RasterImage, bands: SegmentationBands | None = None) -> np.ndarray:
    """Return an int8 (height, width) grid of PartId values, NO_PART for background."""
    bands = bands or SegmentationBands()
    grid = np.full((raster.height, raster.width), NO_PART, dtype=np.int8)
    bbox = raster.bounding_box()
    if bbox is None:
        log.debug("segment: no opaque pixels in %dx%d raster", raster.width, raster.height)
        return grid
    lines = _lines(bbox, bands)
    mask = raster.opaque_mask
    for y in range(raster.height):
        row_mask = mask[y]
        if not row_mask.any():
            continue
        for x in np.flatnonzero(row_mask):
            grid[y, x] = classify(int(x), y, lines)
    if log.isEnabledFor(logging.DEBUG):
        counts = {p.key: int((grid == p).sum()) for p in PartId}
        log.debug("segment: bbox=%s parts=%s", bbox, counts)
    return grid


def derive_pivots(bbox, bands: SegmentationBands | None = None) -> dict[str, Pivot]:
    """Joint pivots from the same bounding-box lines the segmenter uses."""
    bands = bands or SegmentationBands()
    bw = bbox[2]
    lines = _lines(bbox, bands)
    cx = lines["center"]
    return {
        "leftShoulder": Pivot(cx - bw * bands.shoulder_left, lines["shoulder"]),
        "rightShoulder": Pivot(cx + bw * bands.shoulder_right, lines["shoulder"]),
        "leftHip": Pivot(cx - bw * bands.hip_offset, lines["hip"]),
        "rightHip": Pivot(cx + bw * bands.hip_offset, lines["hip"]),
        "leftKnee": Pivot(cx - bw * bands.knee_offset, lines["knee"]),
        "rightKnee": Pivot(cx + bw * bands.knee_offset, lines["knee"]),
    }


def pivots_for(raster: RasterImage, bands: SegmentationBands | None = None) -> dict[str, Pivot]:
    # Fall back to the whole image so an empty raster still has a pivot table
    bbox = raster.bounding_box() or (0, 0, raster.width, raster.height)
    return derive_pivots(bbox, bands)
