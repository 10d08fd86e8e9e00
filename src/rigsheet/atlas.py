import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from .model import CharacterModel
from .raster import save_png
from .renderer import FrameLayout, render_frame

log = logging.getLogger(__name__)


class AtlasCapacityError(RuntimeError):
    """The configured grid cannot hold every frame."""


@dataclass(frozen=True)
class Clip:
    poses: tuple
    rate: float = 10.0
    loop: bool = True

    def __post_init__(self):
        if isinstance(self.rate, bool) or not isinstance(self.rate, (int, float)) or self.rate <= 0:
            raise ValueError(f"Clip rate must be a positive number, got {self.rate!r}")
        if not isinstance(self.loop, bool):
            raise ValueError(f"Clip loop flag must be true/false, got {self.loop!r}")
        object.__setattr__(self, "poses", tuple(dict(p) for p in self.poses))


@dataclass(frozen=True)
class SpriteAtlas:
    image: np.ndarray = field(repr=False)
    frame_width: int
    frame_height: int
    columns: int
    rows: int
    frames: tuple
    clips: dict

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    def frame_image(self, index: int) -> np.ndarray:
        f = self.frames[index]
        return self.image[f["y"]:f["y"] + f["h"], f["x"]:f["x"] + f["w"]]

    def metadata(self) -> dict[str, Any]:
        return {
            "frameWidth": self.frame_width,
            "frameHeight": self.frame_height,
            "columns": self.columns,
            "rows": self.rows,
            "frames": [dict(f) for f in self.frames],
            "animations": {name: dict(c, frameIndices=list(c["frameIndices"])) for name, c in self.clips.items()},
        }

    def save(self, png_path: str | Path, json_path: str | Path | None = None) -> None:
        save_png(self.image, png_path)
        if json_path is not None:
            Path(json_path).parent.mkdir(parents=True, exist_ok=True)
            with open(json_path, "w", encoding="utf-8") as f:
                json.dump(self.metadata(), f, indent=2)


def frame_position(index: int, columns: int, frame_width: int, frame_height: int) -> tuple[int, int]:
    return (index % columns) * frame_width, (index // columns) * frame_height


class AtlasBuilder:
    """Renders every pose of every clip into one grid, once per character key."""

    def __init__(self, columns: int = 2, rows: int | None = None, workers: int = 1):
        if columns <= 0:
            raise ValueError(f"Atlas columns must be positive, got {columns}")
        if rows is not None and rows < 0:
            raise ValueError(f"Atlas rows must be non-negative, got {rows}")
        self.columns = columns
        self.rows = rows
        self.workers = max(1, int(workers))
        self._built: dict[Any, SpriteAtlas] = {}

    def get(self, key) -> SpriteAtlas | None:
        return self._built.get(key)

    def build(self, key, model: CharacterModel, clips: dict[str, Clip], layout: FrameLayout) -> SpriteAtlas:
        existing = self._built.get(key)
        if existing is not None:
            log.debug("atlas '%s' already built, reusing", key)
            return existing

        poses = []
        clip_meta = {}
        for name, clip in clips.items():
            start = len(poses)
            poses.extend(clip.poses)
            clip_meta[name] = {
                "frameIndices": tuple(range(start, len(poses))),
                "rate": clip.rate,
                "loop": clip.loop,
            }

        total = len(poses)
        rows = math.ceil(total / self.columns) if self.rows is None else self.rows
        if total > rows * self.columns:
            raise AtlasCapacityError(
                f"{total} frames do not fit a {self.columns}x{rows} atlas grid ({rows * self.columns} cells)"
            )

        fw, fh = layout.width, layout.height
        image = np.zeros((rows * fh, self.columns * fw, 4), dtype=np.uint8)
        frames = []
        for i in range(total):
            x, y = frame_position(i, self.columns, fw, fh)
            frames.append({"index": i, "x": x, "y": y, "w": fw, "h": fh})

        def render_into(i: int) -> None:
            f = frames[i]
            # Each frame owns a disjoint cell, so concurrent writes never overlap.
            image[f["y"]:f["y"] + fh, f["x"]:f["x"] + fw] = render_frame(model, poses[i], layout)

        if self.workers > 1 and total > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                list(pool.map(render_into, range(total)))
        else:
            for i in range(total):
                render_into(i)

        image.flags.writeable = False
        atlas = SpriteAtlas(
            image=image,
            frame_width=fw,
            frame_height=fh,
            columns=self.columns,
            rows=rows,
            frames=tuple(frames),
            clips=clip_meta,
        )
        log.debug("atlas '%s': %d frames in %dx%d grid (%dx%d px)", key, total, self.columns, rows, atlas.width, atlas.height)
        self._built[key] = atlas
        return atlas
