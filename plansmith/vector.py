"""Semantic vectors on the unit 3-sphere."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List
import math

EPSILON = 1e-9
NEUTRAL = (0.5, 0.5, 0.5, 0.5)

# Above this dot product slerp degrades to a normalized lerp.
SLERP_LINEAR_THRESHOLD = 0.9995

GOLDEN_RATIO = (1 + math.sqrt(5)) / 2
GOLDEN_ANGLE = math.pi * (3 - math.sqrt(5))


@dataclass(frozen=True)
class SemanticVector:
    """Immutable 4-component vector. Build through `of` to get a unit vector."""

    w: float
    x: float
    y: float
    z: float

    @classmethod
    def of(cls, w: float, x: float, y: float, z: float) -> "SemanticVector":
        norm = math.sqrt(w * w + x * x + y * y + z * z)
        if norm <= EPSILON or math.isnan(norm) or math.isinf(norm):
            return cls.neutral()
        return cls(w / norm, x / norm, y / norm, z / norm)

    @classmethod
    def neutral(cls) -> "SemanticVector":
        w, x, y, z = NEUTRAL
        norm = math.sqrt(w * w + x * x + y * y + z * z)
        return cls(w / norm, x / norm, y / norm, z / norm)

    @classmethod
    def from_list(cls, values: Iterable[float]) -> "SemanticVector":
        items = [float(v) for v in values]
        if len(items) != 4:
            return cls.neutral()
        return cls.of(*items)

    def as_list(self) -> List[float]:
        return [self.w, self.x, self.y, self.z]

    @property
    def norm(self) -> float:
        return math.sqrt(self.dot(self))

    def is_unit(self, tolerance: float = 1e-6) -> bool:
        return abs(self.norm - 1.0) <= tolerance

    def dot(self, other: "SemanticVector") -> float:
        return self.w * other.w + self.x * other.x + self.y * other.y + self.z * other.z

    def similarity(self, other: "SemanticVector") -> float:
        """Cosine similarity, clamped to [-1, 1]."""
        return max(-1.0, min(1.0, self.dot(other)))

    def scaled(self, factors: Iterable[float]) -> "SemanticVector":
        fw, fx, fy, fz = list(factors)
        return SemanticVector.of(self.w * fw, self.x * fx, self.y * fy, self.z * fz)

    def blend(self, other: "SemanticVector", alpha: float) -> "SemanticVector":
        """Normalized linear blend: (1 - alpha) * self + alpha * other."""
        keep = 1.0 - alpha
        return SemanticVector.of(
            self.w * keep + other.w * alpha,
            self.x * keep + other.x * alpha,
            self.y * keep + other.y * alpha,
            self.z * keep + other.z * alpha,
        )

    def slerp(self, other: "SemanticVector", t: float) -> "SemanticVector":
        """Spherical interpolation along the shorter great circle."""
        target = other
        dot = self.dot(other)
        if dot < 0.0:
            target = SemanticVector(-other.w, -other.x, -other.y, -other.z)
            dot = -dot
        if dot > SLERP_LINEAR_THRESHOLD:
            return self.blend(target, t)
        omega = math.acos(min(1.0, dot))
        sin_omega = math.sin(omega)
        a = math.sin((1 - t) * omega) / sin_omega
        b = math.sin(t * omega) / sin_omega
        return SemanticVector.of(
            a * self.w + b * target.w,
            a * self.x + b * target.x,
            a * self.y + b * target.y,
            a * self.z + b * target.z,
        )

    def perturbed(self, index: int, radius: float) -> "SemanticVector":
        """Nudge along the index-th golden-angle direction and renormalize."""
        count = index + 1
        theta = GOLDEN_ANGLE * count
        phi = math.acos(1 - 2 * ((count - 0.5) / (count + 1)))
        dx = math.sin(phi) * math.cos(theta)
        dy = math.sin(phi) * math.sin(theta)
        dz = math.cos(phi)
        dw = math.cos(count * 0.1)
        return SemanticVector.of(
            self.w + dw * radius,
            self.x + dx * radius,
            self.y + dy * radius,
            self.z + dz * radius,
        )


def similarity(a: SemanticVector, b: SemanticVector) -> float:
    return a.similarity(b)
