"""YAML character definitions.

Example (auto-segmented from an image):

    name: hoodlum
    source: hoodlum.png
    background: "ffffff"
    segmentation: {head: 0.28, hip: 0.60, knee: 0.79}
    frame: {width: 32, height: 32, scale: auto}
    atlas: {columns: 2}
    angle_units: degrees
    clips:
      walk: {preset: walker/walk}

A hand-authored character replaces `source` with `palette`, `pivots` and
`parts` (see CharacterModel.to_table()).
"""
import logging
import math
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from .atlas import AtlasBuilder, Clip
from .model import CharacterModel, model_from_raster, model_from_table
from .raster import load_image
from .renderer import JOINT_NAMES, FrameLayout
from .segmenter import SegmentationBands

log = logging.getLogger(__name__)

ANGLE_UNITS = ("radians", "degrees")


def load_yaml(path: str | Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_presets() -> dict[str, Any]:
    text = resources.files("rigsheet").joinpath("data/poses.yaml").read_text(encoding="utf-8")
    return yaml.safe_load(text)


def parse_pose(raw: Any, units: str = "radians") -> dict[str, float]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Pose must be a mapping of joint/offset to number, got {raw!r}")
    pose = {}
    for k, v in raw.items():
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError(f"Pose value for '{k}' must be a number, got {v!r}")
        pose[str(k)] = math.radians(v) if units == "degrees" and k in JOINT_NAMES else float(v)
    return pose


def _preset_clip(ref: str, presets: dict) -> dict:
    group, _, clip = str(ref).partition("/")
    try:
        return presets[group][clip]
    except (KeyError, TypeError):
        raise ValueError(f"Unknown pose preset '{ref}' (expected <set>/<clip>, e.g. 'hero/run')") from None


def parse_clips(raw: Any, units: str = "radians", presets: dict | None = None) -> dict[str, Clip]:
    if not isinstance(raw, dict) or not raw:
        raise ValueError("'clips' must be a non-empty mapping of clip name to definition")
    clips = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ValueError(f"Clip '{name}' must be a mapping")
        base = {}
        if "preset" in entry:
            if presets is None:
                presets = load_presets()
            base = _preset_clip(entry["preset"], presets)
        if "poses" in entry:
            poses, pose_units = entry["poses"], units
        else:
            # preset tables are authored in degrees
            poses, pose_units = base.get("poses"), "degrees"
        if not isinstance(poses, list) or not poses:
            raise ValueError(f"Clip '{name}' must define a non-empty 'poses' list")
        clips[str(name)] = Clip(
            poses=tuple(parse_pose(p, pose_units) for p in poses),
            rate=entry.get("rate", base.get("rate", 10)),
            loop=entry.get("loop", base.get("loop", True)),
        )
    return clips


def parse_layout(raw: Any) -> FrameLayout:
    if not isinstance(raw, dict):
        raise ValueError("'frame' must be a mapping with width and height")
    for k in ("width", "height"):
        if not isinstance(raw.get(k), int) or isinstance(raw.get(k), bool):
            raise ValueError(f"'frame.{k}' must be an integer, got {raw.get(k)!r}")
    origin = raw.get("origin")
    if origin is not None:
        if not isinstance(origin, list) or len(origin) != 2 or not all(isinstance(v, (int, float)) for v in origin):
            raise ValueError(f"'frame.origin' must be [x, y], got {origin!r}")
        origin = (origin[0], origin[1])
    return FrameLayout(width=raw["width"], height=raw["height"], scale=raw.get("scale", 1.0), origin=origin)


@dataclass(frozen=True)
class Character:
    key: str
    model: CharacterModel
    clips: dict
    layout: FrameLayout
    columns: int = 2
    rows: int | None = None

    def builder(self, workers: int = 1) -> AtlasBuilder:
        return AtlasBuilder(columns=self.columns, rows=self.rows, workers=workers)


def character_from_dict(data: Any, base_dir: str | Path = ".") -> Character:
    if not isinstance(data, dict):
        raise ValueError("Character file must be a mapping")
    name = str(data.get("name") or "character")

    units = data.get("angle_units", "radians")
    if units not in ANGLE_UNITS:
        raise ValueError(f"'angle_units' must be one of {ANGLE_UNITS}, got {units!r}")

    if "source" in data:
        if "parts" in data:
            raise ValueError("Character defines both 'source' and 'parts'; choose one")
        raster = load_image(Path(base_dir) / data["source"], background=data.get("background"))
        bands = SegmentationBands.from_dict(data.get("segmentation"))
        model = model_from_raster(raster, bands, name=name)
        key = f"{name}@{raster.digest}"
    elif "parts" in data:
        model = model_from_table(data, name=name)
        key = name
    else:
        raise ValueError("Character needs either an image 'source' or a hand-authored 'parts' table")

    atlas_cfg = data.get("atlas") or {}
    if not isinstance(atlas_cfg, dict):
        raise ValueError("'atlas' must be a mapping")
    columns = atlas_cfg.get("columns", 2)
    rows = atlas_cfg.get("rows")
    if not isinstance(columns, int) or columns <= 0:
        raise ValueError(f"'atlas.columns' must be a positive integer, got {columns!r}")
    if rows is not None and (not isinstance(rows, int) or rows < 0):
        raise ValueError(f"'atlas.rows' must be a non-negative integer, got {rows!r}")

    layout = parse_layout(data.get("frame"))
    clips = parse_clips(data.get("clips"), units)
    log.debug("character '%s': %d clips, frame %dx%d", name, len(clips), layout.width, layout.height)
    return Character(key=key, model=model, clips=clips, layout=layout, columns=columns, rows=rows)


def load_character(path: str | Path) -> Character:
    path = Path(path)
    return character_from_dict(load_yaml(path), base_dir=path.parent)


SAMPLES = ("hero",)


def load_sample(name: str) -> Character:
    """Load one of the bundled hand-authored characters."""
    if name not in SAMPLES:
        raise ValueError(f"Unknown sample character '{name}' (expected one of {list(SAMPLES)})")
    text = resources.files("rigsheet").joinpath(f"data/{name}.yaml").read_text(encoding="utf-8")
    return character_from_dict(yaml.safe_load(text))
