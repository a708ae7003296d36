from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from ase import Atoms, units

from geomutils.allowed_space import AllowedSpace
from geomutils.bond_info import BondInfo
from geomutils.collision_detection import CollisionDetection
from geomutils.coord_transform import random_eulers
from geomutils.errors import GeometryError
from geomutils.geometry import Geometry
from geomutils.mutation import GeometryMutation

logger = logging.getLogger(__name__)

MAX_TO_EMERGENCY = 100

PACKING_MODES = ("ascending", "random", "bysize")
FAILED_ATTEMPTS_TO_GROW = 500
CELL_GROWTH = 7.0 * units.Bohr
TRIES_BEFORE_RESET = 10000
MAX_RESETS = 5


def _placement_atoms(geometry: Geometry, order: Sequence[int]) -> Atoms:
    mols = [geometry.molecules[i] for i in order]
    return Atoms(
        numbers=np.concatenate([m.numbers for m in mols]),
        positions=np.vstack([m.cartesians() for m in mols]),
    )


def _placement_bonds(geometry: Geometry, order: Sequence[int]) -> BondInfo:
    ranges = geometry.atom_ranges()
    indices = [a for i in order for a in range(*ranges[i])]
    return geometry.bonds.subset(indices)


class RandomizedGeometryInitializer:
    """
    Drops the molecules one at a time at points sampled from ``space`` with
    random orientations. Each placement is checked against the atoms placed
    before it; the finished cluster is checked for dissociation and, with an
    environment, for fit. After ``max_to_emergency`` unfit rounds the last
    geometry is returned as is.
    """

    def __init__(
        self,
        template: Geometry,
        space: AllowedSpace,
        rng: np.random.Generator,
        blow_collision: float,
        blow_dissociation: float,
        collision: CollisionDetection | None = None,
        check_dissociation: bool = True,
        max_placement_tries: int = 1000,
        max_cluster_tries: int = 100,
        max_to_emergency: int = MAX_TO_EMERGENCY,
    ) -> None:
        template.validate()
        self.template = template
        self.space = space
        self.rng = rng
        self.blow_collision = blow_collision
        self.blow_dissociation = blow_dissociation
        self.collision = collision or CollisionDetection()
        self._collision_info = self.collision.new_info()
        self.check_dissociation = check_dissociation
        self.max_placement_tries = max_placement_tries
        self.max_cluster_tries = max_cluster_tries
        self.max_to_emergency = max_to_emergency

    def initialize(self, future_id: int) -> Geometry:
        geometry = self.template.copy(self.rng)
        geometry.id = future_id
        geometry.fitness = None
        fits = False
        emergency = 0
        while not fits and emergency < self.max_to_emergency:
            self._randomize(geometry)
            if geometry.environment is not None:
                geometry.environment = geometry.environment.initialize()
                fits = geometry.environment.does_it_fit(geometry.to_atoms())
            else:
                fits = True
            emergency += 1
        if not fits:
            logger.warning(
                "Geometry %d does not fit its environment after %d tries, returning it as is.",
                future_id,
                emergency,
            )
        return geometry

    def _randomize(self, geometry: Geometry) -> None:
        fixed = [i for i, m in enumerate(geometry.molecules) if m.constricted]
        free = [i for i, m in enumerate(geometry.molecules) if not m.constricted]
        for attempt in range(self.max_cluster_tries):
            if self._place_all(geometry, fixed, free):
                atoms = geometry.to_atoms()
                if not self.check_dissociation or not self.collision.check_for_dissociation(
                    atoms,
                    self.blow_dissociation,
                    geometry.bonds,
                    info=self._collision_info,
                ):
                    return
            logger.debug("Geometry %d: cluster attempt %d rejected.", geometry.id, attempt)
        logger.warning(
            "Geometry %d: no valid cluster after %d attempts, keeping the last one.",
            geometry.id,
            self.max_cluster_tries,
        )

    def _place_all(self, geometry: Geometry, fixed: list[int], free: list[int]) -> bool:
        order = list(fixed)
        for which in free:
            order.append(which)
            bonds = _placement_bonds(geometry, order)
            molecule = geometry.molecules[which]
            n_new = molecule.n_atoms
            placed = False
            for _ in range(self.max_placement_tries):
                molecule.position = self.space.sample()
                molecule.orientation = random_eulers(self.rng)
                atoms = _placement_atoms(geometry, order)
                if not self.collision.check_only_for_collision(
                    atoms,
                    self.blow_collision,
                    bonds,
                    len(atoms) - n_new,
                    len(atoms),
                    info=self._collision_info,
                ):
                    placed = True
                    break
            if not placed:
                return False
        return True


class PackingInitializer(GeometryMutation):
    """
    Packs the molecules one after another into a box of edge lengths
    ``cell``, each new molecule touching the ones already placed. With
    ``dims == 2`` all centers of mass lie in the z = 0 plane and molecules
    only rotate about z. The box grows after repeated failures and is reset
    after too many; after ``MAX_RESETS`` resets the geometry is returned as is.

    As a mutation it repacks a duplicate of the given geometry.
    """

    def __init__(
        self,
        template: Geometry,
        rng: np.random.Generator,
        cell: Sequence[float],
        blow_collision: float,
        blow_dissociation: float,
        mode: str = "ascending",
        dims: int = 3,
        collision: CollisionDetection | None = None,
    ) -> None:
        if mode not in PACKING_MODES:
            raise GeometryError(f"Unknown packing mode '{mode}', expected one of {PACKING_MODES}.")
        if dims not in (2, 3):
            raise GeometryError(f"Packing dimensionality must be 2 or 3, got {dims}.")
        self.cell = np.array(cell, dtype=float)
        if self.cell.shape != (3,) or np.any(self.cell <= 0.0):
            raise GeometryError("Packing cell must be three positive edge lengths.")
        template.validate()
        self.template = template
        self.rng = rng
        self.blow_collision = blow_collision
        self.blow_dissociation = blow_dissociation
        self.mode = mode
        self.dims = dims
        self.collision = collision or CollisionDetection()
        self._collision_info = self.collision.new_info()

    def initialize(self, future_id: int) -> Geometry:
        geometry = self.template.copy(self.rng)
        geometry.id = future_id
        geometry.fitness = None
        return self._pack(geometry)

    def mutate(self, geometry: Geometry) -> Geometry:
        packed = geometry.copy(self.rng)
        packed.fitness = None
        return self._pack(packed)

    def _order(self, geometry: Geometry) -> list[int]:
        free = [i for i, m in enumerate(geometry.molecules) if not m.constricted]
        if self.mode == "random":
            return [free[i] for i in self.rng.permutation(len(free))]
        if self.mode == "bysize":
            extent = {
                i: float(np.max(np.linalg.norm(geometry.molecules[i].reference, axis=1)))
                for i in free
            }
            return sorted(free, key=lambda i: (-extent[i], i))
        return free

    def _random_pose(self, cell: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        com = self.rng.random(3) * cell
        if self.dims == 2:
            com[2] = 0.0
            return com, np.array([self.rng.random() * 2.0 * np.pi, 0.0, 0.0])
        return com, random_eulers(self.rng)

    def _pack(self, geometry: Geometry) -> Geometry:
        order = self._order(geometry)
        resets = 0
        while not self._try_pack(geometry, order):
            resets += 1
            if resets >= MAX_RESETS:
                logger.warning(
                    "Packing of geometry %d reset the cell %d times, returning it as is.",
                    geometry.id,
                    resets,
                )
                break
            logger.warning(
                "Needing too many iterations to pack geometry %d, resetting cell size.",
                geometry.id,
            )
        if geometry.environment is not None:
            geometry.environment = geometry.environment.initialize()
        return geometry

    def _try_pack(self, geometry: Geometry, order: list[int]) -> bool:
        cell = self.cell.copy()
        placed = [i for i, m in enumerate(geometry.molecules) if m.constricted]
        total_failed = 0
        for step, which in enumerate(order):
            molecule = geometry.molecules[which]
            if step == 0 and not placed:
                center = 0.5 * cell
                if self.dims == 2:
                    center[2] = 0.0
                molecule.position, molecule.orientation = center, self._random_pose(cell)[1]
                placed.append(which)
                continue
            current = placed + [which]
            bonds = _placement_bonds(geometry, current)
            n_new = molecule.n_atoms
            failed = 0
            while True:
                molecule.position, molecule.orientation = self._random_pose(cell)
                atoms = _placement_atoms(geometry, current)
                n = len(atoms)
                if not self.collision.check_only_for_collision(
                    atoms,
                    self.blow_collision,
                    bonds,
                    n - n_new,
                    n,
                    info=self._collision_info,
                ) and not self.collision.check_for_dissociation(
                    atoms, self.blow_dissociation, bonds, info=self._collision_info
                ):
                    break
                failed += 1
                total_failed += 1
                if total_failed >= TRIES_BEFORE_RESET:
                    return False
                if failed % FAILED_ATTEMPTS_TO_GROW == 0:
                    cell += self.rng.random() * CELL_GROWTH
                    if self.dims == 2:
                        cell[2] = self.cell[2]
            placed.append(which)
        return True
