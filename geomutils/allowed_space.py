"""
Spatial constraint regions used to seed molecule placement.

Every region samples with the generator handed to it at construction and
guarantees ``contains(sample())``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from geomutils.coord_transform import spherical_to_cartesian
from geomutils.errors import GeometryError

# relative slack for round-off when testing points produced by sample()
_TOL = 1e-10


class AllowedSpace(ABC):
    def __init__(self, center: np.ndarray, rng: np.random.Generator) -> None:
        self.center = np.array(center, dtype=float)
        if self.center.shape != (3,):
            raise GeometryError("Allowed space center must be a 3-vector.")
        self.rng = rng

    @abstractmethod
    def sample(self) -> np.ndarray:
        raise NotImplementedError

    @abstractmethod
    def contains(self, point: np.ndarray) -> bool:
        raise NotImplementedError

    @abstractmethod
    def copy(self, rng: np.random.Generator | None = None) -> "AllowedSpace":
        raise NotImplementedError

    def _spherical_draw(self, radius: float) -> np.ndarray:
        # radius-uniform on purpose, not volume-uniform
        sph = np.array(
            [
                radius,
                self.rng.random() * 2.0 * np.pi,
                self.rng.random() * np.pi,
            ]
        )
        return spherical_to_cartesian(sph) + self.center

    def _radius_of(self, point: np.ndarray) -> float:
        return float(np.linalg.norm(np.asarray(point, dtype=float) - self.center))


class SphereSpace(AllowedSpace):
    def __init__(
        self, center: np.ndarray, radius: float, rng: np.random.Generator
    ) -> None:
        super().__init__(center, rng)
        if radius <= 0.0:
            raise GeometryError(f"Sphere radius must be positive, got {radius}.")
        self.radius = float(radius)

    def sample(self) -> np.ndarray:
        return self._spherical_draw(self.radius * self.rng.random())

    def contains(self, point: np.ndarray) -> bool:
        return self._radius_of(point) <= self.radius * (1.0 + _TOL)

    def copy(self, rng: np.random.Generator | None = None) -> "SphereSpace":
        return SphereSpace(self.center.copy(), self.radius, rng or self.rng)


class OrbitSpace(AllowedSpace):
    def __init__(
        self,
        center: np.ndarray,
        inner_radius: float,
        outer_radius: float,
        rng: np.random.Generator,
    ) -> None:
        super().__init__(center, rng)
        if inner_radius < 0.0 or outer_radius <= inner_radius:
            raise GeometryError(
                f"Orbit shell needs 0 <= inner < outer, got {inner_radius}, {outer_radius}."
            )
        self.inner_radius = float(inner_radius)
        self.outer_radius = float(outer_radius)

    def sample(self) -> np.ndarray:
        r = (self.outer_radius - self.inner_radius) * self.rng.random()
        return self._spherical_draw(r + self.inner_radius)

    def contains(self, point: np.ndarray) -> bool:
        r = self._radius_of(point)
        return (
            self.inner_radius * (1.0 - _TOL) - _TOL
            <= r
            <= self.outer_radius * (1.0 + _TOL)
        )

    def copy(self, rng: np.random.Generator | None = None) -> "OrbitSpace":
        return OrbitSpace(
            self.center.copy(), self.inner_radius, self.outer_radius, rng or self.rng
        )


class HalfSphereSpace(SphereSpace):
    """Upper half (z >= center z) of a sphere, e.g. above a surface."""

    def sample(self) -> np.ndarray:
        point = super().sample()
        if point[2] < self.center[2]:
            point[2] = self.center[2] + (self.center[2] - point[2])
        return point

    def contains(self, point: np.ndarray) -> bool:
        if point[2] < self.center[2]:
            return False
        return super().contains(point)

    def copy(self, rng: np.random.Generator | None = None) -> "HalfSphereSpace":
        return HalfSphereSpace(self.center.copy(), self.radius, rng or self.rng)


class BoxSpace(AllowedSpace):
    """Axis-aligned box of edge lengths ``cell`` centered on ``center``."""

    def __init__(
        self, center: np.ndarray, cell: np.ndarray, rng: np.random.Generator
    ) -> None:
        super().__init__(center, rng)
        self.cell = np.array(cell, dtype=float)
        if self.cell.shape != (3,) or np.any(self.cell <= 0.0):
            raise GeometryError("Box cell must be three positive edge lengths.")

    def sample(self) -> np.ndarray:
        return self.center + (self.rng.random(3) - 0.5) * self.cell

    def contains(self, point: np.ndarray) -> bool:
        half = 0.5 * self.cell * (1.0 + _TOL)
        return bool(np.all(np.abs(np.asarray(point, dtype=float) - self.center) <= half))

    def copy(self, rng: np.random.Generator | None = None) -> "BoxSpace":
        return BoxSpace(self.center.copy(), self.cell.copy(), rng or self.rng)
