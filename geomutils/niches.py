from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np

from geomutils.coord_transform import center_of_mass
from geomutils.errors import GeometryError
from geomutils.geometry import Geometry


@dataclass(frozen=True)
class Niche:
    key: str

    def __str__(self) -> str:
        return self.key


class SurfaceDetector(Protocol):
    def detect_surface(self, geometry: Geometry) -> set[int]: ...


class NicheComputer(ABC):
    @abstractmethod
    def compute_niche(self, geometry: Geometry) -> Niche:
        raise NotImplementedError


class ChainedNicheComputer(NicheComputer):
    """Concatenates the keys of its sub-nichers in the given order."""

    def __init__(self, nichers: Sequence[NicheComputer]) -> None:
        if not nichers:
            raise GeometryError("Chained niche computer needs at least one sub-nicher.")
        self.nichers = list(nichers)

    def compute_niche(self, geometry: Geometry) -> Niche:
        return Niche("".join(n.compute_niche(geometry).key for n in self.nichers))


class InteriorMoleculeNicheComputer(NicheComputer):
    """Buckets by the number of molecules the surface detector does not report."""

    def __init__(self, surface_detector: SurfaceDetector) -> None:
        self.surface_detector = surface_detector

    def compute_niche(self, geometry: Geometry) -> Niche:
        surface = self.surface_detector.detect_surface(geometry)
        interior = sum(1 for i in range(geometry.n_particles) if i not in surface)
        return Niche(f"[interior={interior}]")


class GyrationNicheComputer(NicheComputer):
    def __init__(self, bin_width: float = 0.5) -> None:
        if bin_width <= 0.0:
            raise GeometryError(f"Gyration bin width must be positive, got {bin_width}.")
        self.bin_width = bin_width

    def compute_niche(self, geometry: Geometry) -> Niche:
        xyz = geometry.cartesians()
        numbers = geometry.numbers()
        if len(xyz) == 0:
            return Niche("[gyration=0]")
        rel = xyz - center_of_mass(xyz, numbers)
        rg = float(np.sqrt(np.mean(np.sum(rel * rel, axis=1))))
        return Niche(f"[gyration={int(rg // self.bin_width)}]")


class RadialSurfaceDetector:
    """
    A molecule is on the surface when its center of mass lies in the outer
    shell, farther from the cluster center than ``shell_fraction`` of the
    largest such distance.
    """

    def __init__(self, shell_fraction: float = 0.75) -> None:
        if not 0.0 <= shell_fraction <= 1.0:
            raise GeometryError(
                f"Surface shell fraction must lie in [0, 1], got {shell_fraction}."
            )
        self.shell_fraction = shell_fraction

    def detect_surface(self, geometry: Geometry) -> set[int]:
        if geometry.n_particles == 0:
            return set()
        coms = geometry.coms()
        center = center_of_mass(geometry.cartesians(), geometry.numbers())
        radii = np.linalg.norm(coms - center, axis=1)
        cutoff = self.shell_fraction * radii.max()
        return {int(i) for i in np.nonzero(radii >= cutoff)[0]}
