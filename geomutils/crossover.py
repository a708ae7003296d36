from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np

from geomutils.coord_transform import list_of_points
from geomutils.errors import GeometryError
from geomutils.geometry import Geometry

logger = logging.getLogger(__name__)


def swap_flags(n_molecules: int, cut_points: Sequence[int]) -> list[bool]:
    """
    Walk the molecule indices and toggle on every cut point. A cut at 0 swaps
    from the first molecule on.
    """
    cuts = sorted(set(cut_points))
    flags = []
    swap = False
    cutter = 0
    for mol in range(n_molecules):
        if cutter < len(cuts) and cuts[cutter] == mol:
            swap = not swap
            cutter += 1
        flags.append(swap)
    return flags


class GeometryCrossover(ABC):
    """
    Multi-cut crossover of two parents. Both children carry ``future_id``;
    the parents are never modified.
    """

    # 0: prefer the first child when collecting offspring, 1: the second,
    # negative: pick at random
    priority = -1

    def __init__(self, no_cuts: int, rng: np.random.Generator) -> None:
        if no_cuts < 1:
            raise GeometryError(f"Crossover needs at least one cut, got {no_cuts}.")
        self.no_cuts = no_cuts
        self.rng = rng

    def crossover(
        self, mother: Geometry, father: Geometry, future_id: int
    ) -> tuple[Geometry | None, Geometry | None]:
        n_mols = mother.n_particles
        if self.no_cuts >= n_mols:
            logger.error(
                "Too many cutting points for the number of molecules (%d vs %d).",
                self.no_cuts,
                n_mols,
            )
            return None, None
        cut_points = list_of_points(self.no_cuts, n_mols, self.rng)
        return self.crossover_at(mother, father, future_id, cut_points)

    def crossover_at(
        self,
        mother: Geometry,
        father: Geometry,
        future_id: int,
        cut_points: Sequence[int],
    ) -> tuple[Geometry, Geometry]:
        if mother.n_particles != father.n_particles:
            raise GeometryError(
                f"Parents differ in molecule count ({mother.n_particles} vs {father.n_particles})."
            )
        child1 = mother.copy(self.rng)
        child2 = father.copy(self.rng)
        child1.id = future_id
        child2.id = future_id
        child1.fitness = None
        child2.fitness = None
        for mol, swap in enumerate(swap_flags(mother.n_particles, cut_points)):
            if swap:
                self._exchange(child1, child2, mol)
        if child1.environment is not None and child2.environment is not None:
            child1.environment, child2.environment = child1.environment.crossover(
                child2.environment
            )
        return child1, child2

    @abstractmethod
    def _exchange(self, child1: Geometry, child2: Geometry, mol: int) -> None:
        raise NotImplementedError


class OrientationCrossover(GeometryCrossover):
    """Exchanges the Euler angles of the molecules between the cuts."""

    priority = 0

    def _exchange(self, child1: Geometry, child2: Geometry, mol: int) -> None:
        first = child1.molecules[mol]
        second = child2.molecules[mol]
        first.orientation, second.orientation = (
            second.orientation.copy(),
            first.orientation.copy(),
        )


class MoleculeCrossover(GeometryCrossover):
    """Exchanges whole molecule configurations between the cuts."""

    def _exchange(self, child1: Geometry, child2: Geometry, mol: int) -> None:
        first = child1.molecules[mol]
        second = child2.molecules[mol]
        if first.sid != second.sid:
            raise GeometryError(
                f"Molecule {mol} differs between parents ('{first.sid}' vs '{second.sid}')."
            )
        child1.molecules[mol] = second.copy()
        child2.molecules[mol] = first.copy()
