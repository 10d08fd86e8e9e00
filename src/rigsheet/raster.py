import hashlib
import zlib
from pathlib import Path

import numpy as np
from PIL import Image

# Pixels with alpha below this are background, never a foreground color.
ALPHA_THRESHOLD = 20


def parse_hex_rgb(h: str) -> tuple[int, int, int]:
    h = str(h).strip().lower().removeprefix("#").removeprefix("0x")
    if len(h) != 6 or any(c not in "0123456789abcdef" for c in h):
        raise ValueError(f"Invalid RGB color '{h}', expected 6 hex digits (e.g. 'ffffff')")
    val = int(h, 16)
    return (val >> 16) & 0xFF, (val >> 8) & 0xFF, val & 0xFF


def format_hex_rgb(rgb) -> str:
    r, g, b = rgb
    return f"{r:02x}{g:02x}{b:02x}"


def pack_rgb(pixels: np.ndarray) -> np.ndarray:
    """Pack the RGB channels of an (..., 3+) uint8 array into uint32 0xRRGGBB values."""
    rgb = pixels[..., :3].astype(np.uint32)
    return (rgb[..., 0] << 16) | (rgb[..., 1] << 8) | rgb[..., 2]


def unpack_rgb(value) -> tuple[int, int, int]:
    v = int(value)
    return (v >> 16) & 0xFF, (v >> 8) & 0xFF, v & 0xFF


class RasterImage:
    """Immutable RGBA pixel buffer.

    `background` is an optional RGB color key; pixels of exactly that color are
    treated as transparent in addition to the alpha test.
    """

    def __init__(self, pixels, background=None):
        arr = np.array(pixels, dtype=np.uint8, copy=True)
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError(f"Expected an (height, width, 4) RGBA array, got shape {arr.shape}")
        arr.flags.writeable = False
        self._pixels = arr
        if isinstance(background, str):
            background = parse_hex_rgb(background)
        self.background = tuple(background) if background is not None else None
        self._opaque = None
        self._digest = None

    @classmethod
    def from_bytes(cls, data: bytes, width: int, height: int, background=None) -> "RasterImage":
        if width < 0 or height < 0:
            raise ValueError(f"Raster dimensions must be non-negative (got {width}x{height})")
        if len(data) != width * height * 4:
            raise ValueError(f"RGBA buffer length {len(data)} does not match {width}x{height}x4")
        arr = np.frombuffer(bytes(data), dtype=np.uint8).reshape(height, width, 4)
        return cls(arr, background=background)

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def opaque_mask(self) -> np.ndarray:
        if self._opaque is None:
            mask = self._pixels[:, :, 3] >= ALPHA_THRESHOLD
            if self.background is not None:
                key = np.array(self.background, dtype=np.uint8)
                mask &= ~np.all(self._pixels[:, :, :3] == key, axis=2)
            mask.flags.writeable = False
            self._opaque = mask
        return self._opaque

    def is_opaque(self, x: int, y: int) -> bool:
        return bool(self.opaque_mask[y, x])

    def rgb_at(self, x: int, y: int) -> tuple[int, int, int]:
        r, g, b, _ = self._pixels[y, x]
        return int(r), int(g), int(b)

    def bounding_box(self):
        """Return (x, y, w, h) of the opaque pixels, or None when there are none."""
        mask = self.opaque_mask
        if not mask.any():
            return None
        ys = np.flatnonzero(mask.any(axis=1))
        xs = np.flatnonzero(mask.any(axis=0))
        x0, x1 = int(xs[0]), int(xs[-1])
        y0, y1 = int(ys[0]), int(ys[-1])
        return x0, y0, x1 - x0 + 1, y1 - y0 + 1

    @property
    def identity(self) -> str:
        return f"{self.width}x{self.height}:{crc32(self._pixels.tobytes()):08x}"

    @property
    def digest(self) -> str:
        """SHA-256 of the dimensions and pixel bytes; the cache key for derived models."""
        if self._digest is None:
            h = hashlib.sha256(f"{self.width}x{self.height}:".encode("ascii"))
            h.update(self._pixels.tobytes())
            self._digest = h.hexdigest()
        return self._digest


def crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def load_image(path: str | Path, background=None) -> RasterImage:
    with Image.open(path) as img:
        arr = np.asarray(img.convert("RGBA"))
    return RasterImage(arr, background=background)


def save_png(pixels: np.ndarray, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(path)


def inspect_image(path: str | Path, background=None) -> dict:
    raster = load_image(path, background=background)
    info = {
        "width": raster.width,
        "height": raster.height,
        "identity": raster.identity,
        "bbox": raster.bounding_box(),
        "opaque": int(raster.opaque_mask.sum()),
    }
    if info["bbox"] is None:
        info["warning"] = "No opaque pixels. Character will render invisible."
    return info
