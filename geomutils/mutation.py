from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import IntEnum

import numpy as np

from geomutils.coord_transform import random_vector
from geomutils.errors import GeometryError
from geomutils.geometry import Geometry

logger = logging.getLogger(__name__)


class GeometryMutation(ABC):
    @abstractmethod
    def mutate(self, geometry: Geometry) -> Geometry:
        """Return a mutated duplicate, ``geometry`` itself stays untouched."""
        raise NotImplementedError


class MoveMode(IntEnum):
    ONE = 0
    ALL = 1
    SOME = 2


class MonteCarloMutation(GeometryMutation):
    """
    Moves atoms of one randomly chosen, non-constricted molecule by random
    vectors no longer than ``max_move``. Rigid molecules are refitted to the
    moved atoms afterwards, so they translate and rotate but keep their shape.
    """

    def __init__(self, mode: int, max_move: float, rng: np.random.Generator) -> None:
        try:
            self.mode = MoveMode(mode)
        except ValueError as exc:
            raise GeometryError(
                f"Monte-Carlo mutation mode must be 0, 1 or 2, got {mode}."
            ) from exc
        if max_move <= 0.0:
            raise GeometryError(f"Monte-Carlo max move must be positive, got {max_move}.")
        self.max_move = max_move
        self.rng = rng

    def _displacement(self) -> np.ndarray:
        scaling = self.max_move * self.rng.random()
        if self.rng.random() < 0.5:
            scaling = -scaling
        return random_vector(self.rng, norm=scaling)

    def _moved_atoms(self, n_atoms: int) -> list[int]:
        if self.mode == MoveMode.ONE:
            return [int(self.rng.integers(n_atoms))]
        if self.mode == MoveMode.ALL:
            return list(range(n_atoms))
        target = self.rng.random()
        return [i for i in range(n_atoms) if target > self.rng.random()]

    def mutate(self, geometry: Geometry) -> Geometry:
        mutated = geometry.copy(self.rng)
        mutated.fitness = None
        movable = [i for i, mol in enumerate(mutated.molecules) if not mol.constricted]
        if not movable:
            logger.debug("Geometry %d has no movable molecule.", geometry.id)
            return mutated
        which = movable[int(self.rng.integers(len(movable)))]
        molecule = mutated.molecules[which]
        xyz = molecule.cartesians()
        for atom in self._moved_atoms(molecule.n_atoms):
            xyz[atom] += self._displacement()
        molecule.set_cartesians(xyz)
        return mutated


class NoMutation(GeometryMutation):
    """Returns an unevaluated duplicate, for searches driven by crossover alone."""

    def mutate(self, geometry: Geometry) -> Geometry:
        mutated = geometry.copy()
        mutated.fitness = None
        return mutated
