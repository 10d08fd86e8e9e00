"""Forward-kinematics frame renderer.

A frame is rendered back to front: legs (thigh then shin, left side then
right), torso, head, then both arms. Each rotating part is drawn through the
transform of its joint, composed parent before child:

    base . T(hip) . R(hip) . T(knee - hip) . R(knee) . T(-knee)

so a shin rotates in the frame already rotated by its hip. All pivot math
happens in logical (unscaled) coordinates; the output scale is the outermost
factor of `base`, applied once to commands and pivots alike.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, NamedTuple

import numpy as np

from .model import CharacterModel
from .segmenter import PartId
from .transform import Affine

log = logging.getLogger(__name__)

# Angles smaller than this draw the part unrotated.
ANGLE_EPSILON = 0.001

OFFSET_KEYS = ("bodyDx", "bodyDy", "headDy")


class Joint(NamedTuple):
    name: str
    parent: str | None


# Parent before child; the renderer resolves joints in this order.
JOINT_CHAIN = (
    Joint("leftShoulder", None),
    Joint("rightShoulder", None),
    Joint("leftHip", None),
    Joint("leftKnee", "leftHip"),
    Joint("rightHip", None),
    Joint("rightKnee", "rightHip"),
)
JOINT_NAMES = tuple(j.name for j in JOINT_CHAIN)

PART_JOINT = {
    PartId.LEFT_ARM: "leftShoulder",
    PartId.RIGHT_ARM: "rightShoulder",
    PartId.LEFT_THIGH: "leftHip",
    PartId.LEFT_SHIN: "leftKnee",
    PartId.RIGHT_THIGH: "rightHip",
    PartId.RIGHT_SHIN: "rightKnee",
}

DRAW_ORDER = (
    PartId.LEFT_THIGH,
    PartId.LEFT_SHIN,
    PartId.RIGHT_THIGH,
    PartId.RIGHT_SHIN,
    PartId.TORSO,
    PartId.HEAD,
    PartId.LEFT_ARM,
    PartId.RIGHT_ARM,
)


@dataclass(frozen=True)
class FrameLayout:
    """Output frame size plus where the character sits inside it.

    `scale` is a number or "auto" (frame height / source height). `origin` is
    the character's top-left in logical pixels; None centers it horizontally
    with its feet on the bottom edge.
    """

    width: int
    height: int
    scale: float | str = 1.0
    origin: tuple[float, float] | None = None

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Frame size must be positive (got {self.width}x{self.height})")
        if self.scale != "auto" and (isinstance(self.scale, bool) or not isinstance(self.scale, (int, float)) or self.scale <= 0):
            raise ValueError(f"Frame scale must be a positive number or 'auto', got {self.scale!r}")

    def resolve_scale(self, model: CharacterModel) -> float:
        if self.scale == "auto":
            return self.height / model.height if model.height else 1.0
        return float(self.scale)

    def resolve_origin(self, model: CharacterModel, scale: float) -> tuple[float, float]:
        if self.origin is not None:
            return float(self.origin[0]), float(self.origin[1])
        return (self.width / scale - model.width) / 2, self.height / scale - model.height


def _value(pose: dict, key: str) -> float:
    v = pose.get(key, 0) or 0
    return float(v)


def joint_angles(pose: dict) -> dict[str, float]:
    angles = {}
    for name in JOINT_NAMES:
        a = _value(pose, name)
        angles[name] = 0.0 if abs(a) < ANGLE_EPSILON else a
    if log.isEnabledFor(logging.DEBUG):
        unknown = set(pose) - set(JOINT_NAMES) - set(OFFSET_KEYS)
        if unknown:
            log.debug("ignoring unknown pose keys: %s", sorted(unknown))
    return angles


def joint_transforms(model: CharacterModel, pose: dict, base: Affine) -> dict[str, Affine]:
    """World transform of each joint's pivot frame (origin at the pivot)."""
    angles = joint_angles(pose)
    world: dict[str, Affine] = {}
    for joint in JOINT_CHAIN:
        p = model.pivots[joint.name]
        if joint.parent is None:
            t = base.translate(p.x, p.y)
        else:
            pp = model.pivots[joint.parent]
            t = world[joint.parent].translate(p.x - pp.x, p.y - pp.y)
        if angles[joint.name]:
            t = t.rotate(angles[joint.name])
        world[joint.name] = t
    return world


def part_transforms(model: CharacterModel, pose: dict, layout: FrameLayout) -> dict[PartId, Affine]:
    scale = layout.resolve_scale(model)
    ox, oy = layout.resolve_origin(model, scale)
    base = Affine.scaling(scale).translate(ox + _value(pose, "bodyDx"), oy + _value(pose, "bodyDy"))

    world = joint_transforms(model, pose, base)
    transforms = {
        PartId.TORSO: base,
        PartId.HEAD: base.translate(0, _value(pose, "headDy")),
    }
    for part, joint in PART_JOINT.items():
        p = model.pivots[joint]
        # Commands are authored in source coordinates; shift them into the pivot frame.
        transforms[part] = world[joint].translate(-p.x, -p.y)
    return transforms


def fill_rect(buf: np.ndarray, x: float, y: float, w: float, h: float, transform: Affine, rgba) -> None:
    """Fill every pixel whose centre maps back inside the rectangle [x, x+w) x [y, y+h)."""
    height, width = buf.shape[:2]
    corners = [transform.apply(cx, cy) for cx, cy in ((x, y), (x + w, y), (x, y + h), (x + w, y + h))]
    xs = [c[0] for c in corners]
    ys = [c[1] for c in corners]
    x0 = max(int(math.floor(min(xs))), 0)
    x1 = min(int(math.ceil(max(xs))), width)
    y0 = max(int(math.floor(min(ys))), 0)
    y1 = min(int(math.ceil(max(ys))), height)
    if x0 >= x1 or y0 >= y1:
        return

    inv = transform.inverse()
    px, py = np.meshgrid(np.arange(x0, x1) + 0.5, np.arange(y0, y1) + 0.5)
    lx = inv.a * px + inv.b * py + inv.c
    ly = inv.d * px + inv.e * py + inv.f
    inside = (lx >= x) & (lx < x + w) & (ly >= y) & (ly < y + h)
    buf[y0:y1, x0:x1][inside] = rgba


def draw_commands(buf: np.ndarray, commands, palette, transform: Affine) -> None:
    for c in commands:
        r, g, b = palette[c.color]
        fill_rect(buf, c.x, c.y, c.w, c.h, transform, (r, g, b, 255))


def render_frame(model: CharacterModel, pose: dict[str, Any] | None, layout: FrameLayout) -> np.ndarray:
    """Render one pose into a fresh transparent (height, width, 4) RGBA frame."""
    pose = pose or {}
    frame = np.zeros((layout.height, layout.width, 4), dtype=np.uint8)
    if not model.palette:
        return frame
    transforms = part_transforms(model, pose, layout)
    for part in DRAW_ORDER:
        draw_commands(frame, model.commands(part), model.palette, transforms[part])
    return frame
