import math
from typing import NamedTuple


class Affine(NamedTuple):
    """2D affine transform as the top two rows of a 3x3 matrix.

    Maps (x, y) to (a*x + b*y + c, d*x + e*y + f). Values are immutable and
    composed by value, so no save/restore bookkeeping is needed.
    """

    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 0.0
    e: float = 1.0
    f: float = 0.0

    @classmethod
    def identity(cls) -> "Affine":
        return cls()

    @classmethod
    def translation(cls, tx: float, ty: float) -> "Affine":
        return cls(1.0, 0.0, tx, 0.0, 1.0, ty)

    @classmethod
    def rotation(cls, angle: float) -> "Affine":
        cos, sin = math.cos(angle), math.sin(angle)
        return cls(cos, -sin, 0.0, sin, cos, 0.0)

    @classmethod
    def scaling(cls, sx: float, sy: float | None = None) -> "Affine":
        return cls(sx, 0.0, 0.0, 0.0, sx if sy is None else sy, 0.0)

    def compose(self, child: "Affine") -> "Affine":
        """Apply `child` first, then self (matrix product self @ child)."""
        a1, b1, c1, d1, e1, f1 = self
        a2, b2, c2, d2, e2, f2 = child
        return Affine(
            a1 * a2 + b1 * d2,
            a1 * b2 + b1 * e2,
            a1 * c2 + b1 * f2 + c1,
            d1 * a2 + e1 * d2,
            d1 * b2 + e1 * e2,
            d1 * c2 + e1 * f2 + f1,
        )

    def translate(self, tx: float, ty: float) -> "Affine":
        return self.compose(Affine.translation(tx, ty))

    def rotate(self, angle: float) -> "Affine":
        return self.compose(Affine.rotation(angle))

    def scale(self, sx: float, sy: float | None = None) -> "Affine":
        return self.compose(Affine.scaling(sx, sy))

    def inverse(self) -> "Affine":
        a, b, c, d, e, f = self
        det = a * e - b * d
        if det == 0:
            raise ValueError("Affine transform is not invertible")
        ia, ib, id_, ie = e / det, -b / det, -d / det, a / det
        return Affine(ia, ib, -(ia * c + ib * f), id_, ie, -(id_ * c + ie * f))

    def apply(self, x: float, y: float) -> tuple[float, float]:
        return self.a * x + self.b * y + self.c, self.d * x + self.e * y + self.f
